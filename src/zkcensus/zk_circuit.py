"""
Zero-Knowledge circuit definition for the zkcensus system.

This module defines the constraint system proving that a hidden passport
attribute set falls into the published buckets of a census without revealing
the attributes themselves. The circuit shows that:

1. The age derived from the private birth date and reference date lies in
   the supported domain and inside the public age range.
2. The age is at least the census minimum age.
3. The private nationality maps to the public continent code (or, when the
   census does not collect location, the continent code is the neutral
   ``UNKNOWN`` marker).
4. The public nullifier hash is the keyed hash of the private secret and the
   census id.

Circuits are parametrised per census, so the circuit hash (and therefore the
proving and verifying keys) differ between censuses with different rules.
"""

import hashlib
import hmac
import json
from typing import Any, Callable, Dict, List, Optional

import structlog

from .bucketizer import classify_continent, compute_age
from .constants import (
    AGE_RANGE_BOUNDS,
    MAX_SUPPORTED_AGE,
    MIN_SUPPORTED_AGE,
    NULLIFIER_SECRET_LENGTH,
    ZK_CONSTRAINT_SYSTEM_SIZE,
)
from .data_models import (
    CircuitInput,
    Continent,
    NullifierSecret,
    PrivateWitness,
    PublicInput,
)
from .exceptions import ProofFailure, ProofGenerationError, ZkCensusError
from .nullifier import derive_nullifier

# Initialize structured logger
logger = structlog.get_logger(__name__)

CIRCUIT_TYPE = "census_membership"


class CensusCircuit:
    """
    Zero-Knowledge circuit for census bucket membership.

    Parameters
    ----------
    min_age : int
        Census minimum age enforced inside the circuit.
    enable_location : bool
        Whether the continent is bound to the private nationality.
    allow_unknown_continent : bool, default=True
        Whether ``Continent.UNKNOWN`` is an acceptable continent code when
        location is enabled.
    constraint_system_size : int, default=ZK_CONSTRAINT_SYSTEM_SIZE
        Capacity of the constraint system.

    Examples
    --------
    >>> circuit = CensusCircuit(min_age=18, enable_location=True)
    >>> spec = circuit.build_circuit()
    >>> print(f"Circuit has {spec['constraint_count']} constraints")
    """

    def __init__(
        self,
        min_age: int,
        enable_location: bool,
        allow_unknown_continent: bool = True,
        constraint_system_size: int = ZK_CONSTRAINT_SYSTEM_SIZE,
    ) -> None:
        self.min_age = min_age
        self.enable_location = enable_location
        self.allow_unknown_continent = allow_unknown_continent
        self.constraint_system_size = constraint_system_size

        # Circuit components
        self.circuit_constraints: List[Dict[str, Any]] = []
        self.public_inputs: List[str] = []
        self.private_inputs: List[str] = []
        self.intermediate_variables: Dict[str, Any] = {}

        # Circuit state
        self.is_built = False
        self.constraint_count = 0
        self._spec: Optional[Dict[str, Any]] = None

        self._evaluators: Dict[str, Callable[[Dict[str, Any], Dict[str, Any]], bool]] = {
            "age_from_dates": self._eval_age_from_dates,
            "range_proof": self._eval_range_proof,
            "bucket_membership": self._eval_bucket_membership,
            "minimum_age": self._eval_minimum_age,
            "continent_lookup": self._eval_continent_lookup,
            "assert_constant": self._eval_assert_constant,
            "assert_not_constant": self._eval_assert_not_constant,
            "keyed_hash": self._eval_keyed_hash,
            "assert_equal": self._eval_assert_equal,
        }

        logger.debug(
            "CensusCircuit initialized",
            min_age=min_age,
            enable_location=enable_location,
            allow_unknown_continent=allow_unknown_continent,
        )

    def _add_constraint(
        self,
        constraint_type: str,
        inputs: List[str],
        outputs: List[str],
        parameters: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Add a constraint to the circuit.

        Parameters
        ----------
        constraint_type : str
            Type of constraint; must have an evaluator.
        inputs : List[str]
            Input variable names for the constraint.
        outputs : List[str]
            Output variable names for the constraint.
        parameters : Optional[Dict[str, Any]], default=None
            Additional parameters for the constraint.

        Returns
        -------
        str
            Unique identifier for the added constraint.
        """
        constraint_id = f"constraint_{self.constraint_count}_{constraint_type}"

        self.circuit_constraints.append(
            {
                "id": constraint_id,
                "type": constraint_type,
                "inputs": inputs,
                "outputs": outputs,
                "parameters": parameters or {},
            }
        )
        self.constraint_count += 1

        return constraint_id

    def _create_variable(self, name: str, var_type: str = "intermediate") -> str:
        full_name = f"{var_type}_{name}"

        if var_type == "public":
            self.public_inputs.append(full_name)
        elif var_type == "private":
            self.private_inputs.append(full_name)
        else:
            self.intermediate_variables[full_name] = None

        return full_name

    def _add_range_proof(self, variable: str, min_value: int, max_value: int) -> str:
        return self._add_constraint(
            "range_proof",
            [variable],
            [],
            {"min_value": min_value, "max_value": max_value},
        )

    def build_circuit(self) -> Dict[str, Any]:
        """
        Build the constraint system for the census parameters.

        Returns
        -------
        Dict[str, Any]
            Complete circuit specification including constraints and variables.
        """
        if self._spec is not None:
            return self._spec

        self.circuit_constraints = []
        self.public_inputs = []
        self.private_inputs = []
        self.intermediate_variables = {}
        self.constraint_count = 0

        public_census_id = self._create_variable("census_id", "public")
        public_age_range = self._create_variable("age_range_code", "public")
        public_continent = self._create_variable("continent_code", "public")
        public_nullifier = self._create_variable("nullifier_hash", "public")

        private_birth_date = self._create_variable("date_of_birth", "private")
        private_reference_date = self._create_variable("reference_date", "private")
        private_secret = self._create_variable("secret", "private")

        # Age and bucket membership
        age = self._create_variable("age")
        self._add_constraint(
            "age_from_dates", [private_birth_date, private_reference_date], [age]
        )
        self._add_range_proof(age, MIN_SUPPORTED_AGE, MAX_SUPPORTED_AGE)
        self._add_constraint(
            "bucket_membership",
            [age, public_age_range],
            [],
            {"bounds": [list(bounds) for bounds in AGE_RANGE_BOUNDS]},
        )
        self._add_constraint("minimum_age", [age], [], {"min_age": self.min_age})

        # Location
        if self.enable_location:
            private_nationality = self._create_variable("nationality", "private")
            computed_continent = self._create_variable("continent_code")
            self._add_constraint(
                "continent_lookup", [private_nationality], [computed_continent]
            )
            self._add_constraint(
                "assert_equal",
                [computed_continent, public_continent],
                [],
                {"error_message": "Continent mismatch"},
            )
            if not self.allow_unknown_continent:
                self._add_constraint(
                    "assert_not_constant",
                    [public_continent],
                    [],
                    {"value": int(Continent.UNKNOWN)},
                )
        else:
            self._add_constraint(
                "assert_constant",
                [public_continent],
                [],
                {"value": int(Continent.UNKNOWN)},
            )

        # Nullifier
        computed_nullifier = self._create_variable("nullifier_hash")
        self._add_constraint(
            "keyed_hash",
            [private_secret, public_census_id],
            [computed_nullifier],
            {"algorithm": "hmac-sha256"},
        )
        self._add_constraint(
            "assert_equal",
            [computed_nullifier, public_nullifier],
            [],
            {"error_message": "Nullifier mismatch"},
        )

        self.is_built = True

        self._spec = {
            "circuit_type": CIRCUIT_TYPE,
            "constraint_count": self.constraint_count,
            "public_inputs": self.public_inputs,
            "private_inputs": self.private_inputs,
            "intermediate_variables": list(self.intermediate_variables.keys()),
            "constraints": self.circuit_constraints,
            "circuit_parameters": {
                "min_age": self.min_age,
                "enable_location": self.enable_location,
                "allow_unknown_continent": self.allow_unknown_continent,
                "constraint_system_size": self.constraint_system_size,
            },
            "circuit_metadata": {"version": "1.0"},
        }

        logger.debug(
            "Census circuit built",
            constraint_count=self.constraint_count,
            public_inputs=len(self.public_inputs),
            private_inputs=len(self.private_inputs),
        )

        return self._spec

    def validate_circuit(self) -> bool:
        """
        Validate the built circuit for structural correctness.

        Raises
        ------
        ProofGenerationError
            If circuit validation fails.
        """
        if not self.is_built:
            raise ProofGenerationError(
                "Circuit must be built before validation",
                reason=ProofFailure.INVALID_PARAMETERS,
            )

        validation_errors = []

        if self.constraint_count > self.constraint_system_size:
            validation_errors.append(
                f"Too many constraints: {self.constraint_count} > {self.constraint_system_size}"
            )

        for required in (
            "public_census_id",
            "public_age_range_code",
            "public_continent_code",
            "public_nullifier_hash",
        ):
            if required not in self.public_inputs:
                validation_errors.append(f"Missing required public input: {required}")

        output_vars = set()
        for constraint in self.circuit_constraints:
            if constraint["type"] not in self._evaluators:
                validation_errors.append(
                    f"No evaluator for constraint type {constraint['type']}"
                )
            for output in constraint["outputs"]:
                if output in output_vars:
                    validation_errors.append(f"Variable {output} defined multiple times")
                output_vars.add(output)

        if validation_errors:
            raise ProofGenerationError(
                "Circuit validation failed:\n" + "\n".join(validation_errors),
                reason=ProofFailure.INVALID_PARAMETERS,
            )

        return True

    def circuit_hash(self) -> str:
        """SHA-256 of the canonical circuit specification."""
        spec = self.build_circuit()
        return hashlib.sha256(json.dumps(spec, sort_keys=True).encode()).hexdigest()

    def evaluate(self, public: PublicInput, witness: PrivateWitness) -> List[str]:
        """
        Evaluate every constraint against a concrete assignment.

        Parameters
        ----------
        public : PublicInput
            Public statement.
        witness : PrivateWitness
            Private attributes.

        Returns
        -------
        List[str]
            Ids of the unsatisfied constraints; empty when the assignment
            satisfies the circuit.
        """
        self.build_circuit()

        values: Dict[str, Any] = {
            "public_census_id": public.census_id,
            "public_age_range_code": public.age_range_code,
            "public_continent_code": public.continent_code,
            "public_nullifier_hash": public.nullifier_hash,
            "private_date_of_birth": witness.date_of_birth,
            "private_reference_date": witness.reference_date,
            "private_secret": witness.secret,
            "private_nationality": witness.nationality,
        }

        failures = []
        for constraint in self.circuit_constraints:
            evaluator = self._evaluators[constraint["type"]]
            try:
                satisfied = evaluator(constraint, values)
            except (ZkCensusError, KeyError, TypeError, ValueError, AttributeError):
                satisfied = False

            if not satisfied:
                failures.append(constraint["id"])

        return failures

    # -------------------------------------------------------------------------
    # Constraint evaluators
    # -------------------------------------------------------------------------

    def _eval_age_from_dates(self, constraint, values) -> bool:
        birth_date, reference_date = (values[name] for name in constraint["inputs"])
        values[constraint["outputs"][0]] = compute_age(birth_date, reference_date)
        return True

    def _eval_range_proof(self, constraint, values) -> bool:
        value = values[constraint["inputs"][0]]
        params = constraint["parameters"]
        return params["min_value"] <= value <= params["max_value"]

    def _eval_bucket_membership(self, constraint, values) -> bool:
        age, code = (values[name] for name in constraint["inputs"])
        bounds = constraint["parameters"]["bounds"]
        if not 0 <= code < len(bounds):
            return False
        lower, upper = bounds[code]
        return lower <= age <= upper

    def _eval_minimum_age(self, constraint, values) -> bool:
        return values[constraint["inputs"][0]] >= constraint["parameters"]["min_age"]

    def _eval_continent_lookup(self, constraint, values) -> bool:
        nationality = values[constraint["inputs"][0]]
        if not nationality:
            return False
        values[constraint["outputs"][0]] = int(classify_continent(nationality))
        return True

    def _eval_assert_constant(self, constraint, values) -> bool:
        return values[constraint["inputs"][0]] == constraint["parameters"]["value"]

    def _eval_assert_not_constant(self, constraint, values) -> bool:
        return values[constraint["inputs"][0]] != constraint["parameters"]["value"]

    def _eval_keyed_hash(self, constraint, values) -> bool:
        secret, census_id = (values[name] for name in constraint["inputs"])
        values[constraint["outputs"][0]] = derive_nullifier(secret, census_id)
        return True

    def _eval_assert_equal(self, constraint, values) -> bool:
        left, right = (values[name] for name in constraint["inputs"])
        if isinstance(left, bytes) and isinstance(right, bytes):
            return hmac.compare_digest(left, right)
        return left == right

    def generate_circuit_summary(self) -> Dict[str, Any]:
        """
        Generate a summary of the circuit.

        Returns
        -------
        Dict[str, Any]
            Circuit summary including statistics and parameters.
        """
        if not self.is_built:
            return {"error": "Circuit not built"}

        constraint_types: Dict[str, int] = {}
        for constraint in self.circuit_constraints:
            ctype = constraint["type"]
            constraint_types[ctype] = constraint_types.get(ctype, 0) + 1

        return {
            "circuit_built": self.is_built,
            "circuit_hash": self.circuit_hash(),
            "total_constraints": self.constraint_count,
            "constraint_types": constraint_types,
            "public_inputs": len(self.public_inputs),
            "private_inputs": len(self.private_inputs),
            "circuit_parameters": self.build_circuit()["circuit_parameters"],
        }


def validate_circuit_inputs(circuit_input: CircuitInput) -> bool:
    """
    Validate the shape of a circuit input before proving.

    Raises
    ------
    ProofGenerationError
        If any input has the wrong type or size.
    """
    errors = []
    public = circuit_input.public
    witness = circuit_input.witness

    if not isinstance(public.census_id, str) or not public.census_id:
        errors.append("census_id must be a non-empty string")
    if not isinstance(public.age_range_code, int):
        errors.append("age_range_code must be an integer")
    if not isinstance(public.continent_code, int):
        errors.append("continent_code must be an integer")
    if not isinstance(public.nullifier_hash, bytes) or len(public.nullifier_hash) != 32:
        errors.append("nullifier_hash must be 32 bytes")

    if not isinstance(witness.secret, NullifierSecret):
        errors.append("witness secret must be a NullifierSecret")
    elif len(witness.secret.value) != NULLIFIER_SECRET_LENGTH:
        errors.append("witness secret has the wrong length")

    if errors:
        raise ProofGenerationError(
            f"Invalid circuit inputs: {'; '.join(errors)}",
            reason=ProofFailure.INVALID_PARAMETERS,
        )

    return True
