"""
Proving session management for the zkcensus system.

The ProofEngine runs one proving session at a time and exposes its progress
as an explicit state machine:

    IDLE -> BUILDING_INPUT -> PROVING -> SUCCEEDED | FAILED

Cancelling an active session returns the engine to IDLE at once; a timed-out
session ends in FAILED with a ``TIMEOUT`` error. A second ``start`` while a
session is active is refused immediately; sessions are never queued.

Every session owns its worker thread. A stopped session's worker may still be
blocked in its input factory, but it no longer owns the engine: it cannot
change the engine state and it never delays the next session. Every proof is
verified locally before it is reported as a success, and the circuit input is
discarded when the session ends, whatever the outcome.
"""

import itertools
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from typing import Callable, Optional, Set

import structlog

from .config import PROOF_TIMEOUT_SECONDS
from .data_models import CensusProof, CircuitInput, ProofState
from .exceptions import (
    ProofCancelledError,
    ProofEngineBusyError,
    ProofFailure,
    ProofGenerationError,
    ProofVerificationError,
    ZkCensusError,
)
from .zk_prover import ProgressCallback, ProvingParameters, ZkProver

# Initialize structured logger
logger = structlog.get_logger(__name__)

InputFactory = Callable[[], CircuitInput]

_ACTIVE_STATES = (ProofState.BUILDING_INPUT, ProofState.PROVING)


@dataclass(frozen=True)
class ProofEngineStatus:
    """Point-in-time view of the engine."""

    state: ProofState
    progress: float
    census_id: Optional[str] = None
    proof: Optional[CensusProof] = None
    error: Optional[ZkCensusError] = None

    @property
    def is_active(self) -> bool:
        return self.state in _ACTIVE_STATES


class ProvingSession:
    """
    Handle on one proving session.

    Parameters
    ----------
    session_id : int
        Engine-local session number.
    census_id : str
        Census the proof is generated for.
    """

    def __init__(self, engine: "ProofEngine", session_id: int, census_id: str) -> None:
        self.session_id = session_id
        self.census_id = census_id
        self.progress = 0.0
        self.cancel_event = threading.Event()
        self._engine = engine
        self._future: Optional[Future] = None

    def result(self, timeout: Optional[float] = None) -> CensusProof:
        """
        Block until the session finishes.

        Raises
        ------
        concurrent.futures.TimeoutError
            If the session is still running after ``timeout`` seconds.
        ProofGenerationError
            If the session failed or was cancelled.
        """
        return self._future.result(timeout=timeout)

    def cancel(self) -> bool:
        return self._engine._stop_session(self)

    def done(self) -> bool:
        return self._future.done()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


class ProofEngine:
    """
    Single-session proving engine.

    Parameters
    ----------
    prover : ZkProver, optional
        Prover used for proof generation and local verification.
    timeout_seconds : float, default=PROOF_TIMEOUT_SECONDS
        Default bound for ``prove``; 0 disables the bound.

    Examples
    --------
    >>> with ProofEngine(ZkProver(proving_rounds=1000)) as engine:
    ...     proof = engine.prove(parameters, circuit_input)
    >>> engine.status().state
    <ProofState.SUCCEEDED: 'succeeded'>
    """

    def __init__(
        self,
        prover: Optional[ZkProver] = None,
        timeout_seconds: float = PROOF_TIMEOUT_SECONDS,
    ) -> None:
        self.prover = prover or ZkProver()
        self.timeout_seconds = timeout_seconds

        self._lock = threading.Lock()
        self._session_ids = itertools.count(1)
        self._workers: Set[threading.Thread] = set()
        self._closed = False

        self._state = ProofState.IDLE
        self._session: Optional[ProvingSession] = None
        self._proof: Optional[CensusProof] = None
        self._error: Optional[ZkCensusError] = None

        logger.info("ProofEngine initialized", timeout_seconds=timeout_seconds)

    # -------------------------------------------------------------------------
    # Public interface
    # -------------------------------------------------------------------------

    def start(
        self,
        parameters: ProvingParameters,
        circuit_input: Optional[CircuitInput] = None,
        input_factory: Optional[InputFactory] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ProvingSession:
        """
        Start a proving session.

        Exactly one of ``circuit_input`` and ``input_factory`` is required.
        The factory runs on the worker thread while the engine is in
        ``BUILDING_INPUT``.

        Raises
        ------
        ProofEngineBusyError
            If a session is already active.
        ProofGenerationError
            If the arguments are inconsistent.
        RuntimeError
            If the engine has been shut down.
        """
        if (circuit_input is None) == (input_factory is None):
            if circuit_input is not None:
                circuit_input.discard()
            raise ProofGenerationError(
                "Provide exactly one of circuit_input and input_factory",
                reason=ProofFailure.INVALID_PARAMETERS,
            )

        with self._lock:
            if self._closed:
                if circuit_input is not None:
                    circuit_input.discard()
                raise RuntimeError("cannot start sessions after shutdown")
            if self._state in _ACTIVE_STATES:
                logger.warning(
                    "Proving session refused, engine busy",
                    active_census_id=self._session.census_id if self._session else None,
                )
                raise ProofEngineBusyError()

            session = ProvingSession(self, next(self._session_ids), parameters.census_id)
            self._session = session
            self._state = ProofState.BUILDING_INPUT
            self._proof = None
            self._error = None
            session._future = Future()
            worker = threading.Thread(
                target=self._work,
                args=(session, parameters, circuit_input, input_factory, on_progress),
                name=f"zkcensus-prover-{session.session_id}",
                daemon=True,
            )
            self._workers.add(worker)
            worker.start()

        logger.info(
            "Proving session started",
            session_id=session.session_id,
            census_id=parameters.census_id,
        )
        return session

    def prove(
        self,
        parameters: ProvingParameters,
        circuit_input: Optional[CircuitInput] = None,
        input_factory: Optional[InputFactory] = None,
        on_progress: Optional[ProgressCallback] = None,
        timeout: Optional[float] = None,
    ) -> CensusProof:
        """
        Run a proving session to completion.

        Raises
        ------
        ProofGenerationError
            ``TIMEOUT`` when the bound elapses, in which case the engine is
            left in ``FAILED`` with that error; otherwise the session's own
            failure.
        """
        timeout = self.timeout_seconds if timeout is None else timeout
        session = self.start(parameters, circuit_input, input_factory, on_progress)

        try:
            return session.result(timeout=timeout or None)
        except FuturesTimeoutError:
            error = ProofGenerationError(
                f"Proof generation exceeded {timeout} seconds",
                reason=ProofFailure.TIMEOUT,
                proof_system=self.prover.proof_system,
            )
            if not self._stop_session(session, error) and session.done():
                # Finished between the timeout and the stop
                return session.result()
            logger.warning(
                "Proving session timed out",
                session_id=session.session_id,
                timeout_seconds=timeout,
            )
            raise error

    def cancel(self) -> bool:
        """Cancel the active session, if any. Returns True if one was cancelled."""
        with self._lock:
            session = self._session
        if session is None:
            return False
        return self._stop_session(session)

    def status(self) -> ProofEngineStatus:
        with self._lock:
            return ProofEngineStatus(
                state=self._state,
                progress=self._session.progress if self._session else 0.0,
                census_id=self._session.census_id if self._session else None,
                proof=self._proof,
                error=self._error,
            )

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None) -> None:
        """
        Cancel the active session and refuse new ones.

        With ``wait`` the call joins every worker still running, including
        those of sessions stopped earlier, each for at most ``timeout``
        seconds.
        """
        with self._lock:
            self._closed = True
        self.cancel()

        if wait:
            with self._lock:
                workers = list(self._workers)
            for worker in workers:
                worker.join(timeout)
        logger.debug("ProofEngine shut down", pending_workers=len(self._workers))

    def __enter__(self) -> "ProofEngine":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown()

    # -------------------------------------------------------------------------
    # Worker side
    # -------------------------------------------------------------------------

    def _stop_session(
        self, session: ProvingSession, error: Optional[ZkCensusError] = None
    ) -> bool:
        """
        Detach ``session`` from the engine.

        Without ``error`` the engine returns to IDLE; with one it ends in
        FAILED carrying that error. Returns False if the session was no
        longer active.
        """
        with self._lock:
            if self._session is not session or self._state not in _ACTIVE_STATES:
                return False
            session.cancel_event.set()
            if error is None:
                self._state = ProofState.IDLE
                self._session = None
            else:
                self._state = ProofState.FAILED
                self._error = error

        if error is None:
            logger.info("Proving session cancelled", session_id=session.session_id)
        return True

    def _work(self, session: ProvingSession, *args) -> None:
        future = session._future
        try:
            if not future.set_running_or_notify_cancel():
                return
            try:
                proof = self._run(session, *args)
            except BaseException as e:
                future.set_exception(e)
            else:
                future.set_result(proof)
        finally:
            with self._lock:
                self._workers.discard(threading.current_thread())

    def _is_current(self, session: ProvingSession) -> bool:
        return self._session is session and not session.cancel_event.is_set()

    def _report_progress(
        self,
        session: ProvingSession,
        fraction: float,
        on_progress: Optional[ProgressCallback],
    ) -> None:
        session.progress = fraction
        if on_progress is not None:
            on_progress(fraction)

    def _run(
        self,
        session: ProvingSession,
        parameters: ProvingParameters,
        circuit_input: Optional[CircuitInput],
        input_factory: Optional[InputFactory],
        on_progress: Optional[ProgressCallback],
    ) -> CensusProof:
        try:
            if circuit_input is None:
                circuit_input = input_factory()

            if circuit_input.public.census_id != parameters.census_id:
                raise ProofGenerationError(
                    "Circuit input belongs to a different census",
                    reason=ProofFailure.INVALID_PARAMETERS,
                )

            with self._lock:
                if not self._is_current(session):
                    raise ProofCancelledError()
                self._state = ProofState.PROVING

            proof = self.prover.prove(
                parameters.proving_key,
                circuit_input,
                cancel_event=session.cancel_event,
                progress=lambda fraction: self._report_progress(
                    session, fraction, on_progress
                ),
            )

            try:
                locally_valid = self.prover.verify(parameters.verifying_key, proof)
            except ProofVerificationError as e:
                raise ProofGenerationError(
                    f"Generated proof is malformed: {e.message}",
                    reason=ProofFailure.INTERNAL_PROOF_INVALID,
                    proof_system=self.prover.proof_system,
                ) from e

            if not locally_valid:
                raise ProofGenerationError(
                    "Generated proof failed local verification",
                    reason=ProofFailure.INTERNAL_PROOF_INVALID,
                    proof_system=self.prover.proof_system,
                )

        except ProofCancelledError:
            logger.info("Proving session stopped", session_id=session.session_id)
            raise
        except ZkCensusError as e:
            self._fail(session, e)
            raise
        except Exception as e:
            wrapped = ProofGenerationError(
                f"Unexpected error during proving session: {str(e)}",
                proof_system=self.prover.proof_system,
            )
            self._fail(session, wrapped)
            raise wrapped from e
        finally:
            if circuit_input is not None:
                circuit_input.discard()

        with self._lock:
            if not self._is_current(session):
                raise ProofCancelledError()
            self._state = ProofState.SUCCEEDED
            self._proof = proof

        logger.info(
            "Proving session succeeded",
            session_id=session.session_id,
            census_id=session.census_id,
            proof_digest=proof.digest()[:16],
        )
        return proof

    def _fail(self, session: ProvingSession, error: ZkCensusError) -> None:
        with self._lock:
            if not self._is_current(session):
                return
            self._state = ProofState.FAILED
            self._error = error

        logger.error(
            "Proving session failed",
            session_id=session.session_id,
            census_id=session.census_id,
            **error.to_dict(),
        )
