"""
Circuit input assembly for the zkcensus system.

The builder combines the bucket assignment, the nullifier hash and the raw
passport attributes needed to prove bucket membership into the public and
private input set of the census circuit. It fails closed: a missing or
malformed attribute aborts construction with a typed error, and the passport
record is wiped whether construction succeeds or not.
"""

import re
from datetime import date, datetime, timezone
from typing import Optional

import structlog

from .bucketizer import Bucketizer, normalize_country_code
from .config import REJECT_EXPIRED_DOCUMENTS
from .data_models import (
    CensusMetadata,
    CircuitInput,
    Continent,
    PassportRecord,
    PrivateWitness,
    PublicInput,
)
from .exceptions import ClassificationError, ClassificationFailure
from .nullifier import NullifierDeriver, derive_nullifier

# Initialize structured logger
logger = structlog.get_logger(__name__)

_COUNTRY_CODE_PATTERN = re.compile(r"^[A-Z]{1,3}$")


def _missing(attribute: str) -> ClassificationError:
    return ClassificationError(
        f"Passport attribute '{attribute}' is missing",
        reason=ClassificationFailure.MISSING_ATTRIBUTE,
        attribute=attribute,
    )


def _malformed(attribute: str, detail: str) -> ClassificationError:
    return ClassificationError(
        f"Passport attribute '{attribute}' is malformed: {detail}",
        reason=ClassificationFailure.MALFORMED_ATTRIBUTE,
        attribute=attribute,
    )


def _as_date(value, attribute: str) -> date:
    if value is None:
        raise _missing(attribute)
    if isinstance(value, datetime):
        return value.date()
    if not isinstance(value, date):
        raise _malformed(attribute, f"expected a date, got {type(value).__name__}")
    return value


class CircuitInputBuilder:
    """
    Builds fresh circuit input for one census submission.

    Parameters
    ----------
    nullifier_deriver : NullifierDeriver
        Source of the device nullifier secret.
    bucketizer : Bucketizer, optional
        Attribute classifier. A default instance is used when omitted.
    reject_expired_documents : bool, default=REJECT_EXPIRED_DOCUMENTS
        Refuse passports that expired before the reference date.

    Examples
    --------
    >>> builder = CircuitInputBuilder(NullifierDeriver(InMemorySecretStore()))
    >>> circuit_input = builder.build(record, census, reference_date=date(2024, 6, 1))
    >>> record.is_wiped
    True
    """

    def __init__(
        self,
        nullifier_deriver: NullifierDeriver,
        bucketizer: Optional[Bucketizer] = None,
        reject_expired_documents: bool = REJECT_EXPIRED_DOCUMENTS,
    ) -> None:
        self.nullifier_deriver = nullifier_deriver
        self.bucketizer = bucketizer or Bucketizer()
        self.reject_expired_documents = reject_expired_documents

    def build(
        self,
        record: PassportRecord,
        census: CensusMetadata,
        reference_date: Optional[date] = None,
    ) -> CircuitInput:
        """
        Assemble the circuit input for ``record`` under ``census``.

        Parameters
        ----------
        record : PassportRecord
            Parsed passport attributes. Wiped before this method returns.
        census : CensusMetadata
            Census the proof is built for.
        reference_date : date, optional
            Date ages are evaluated at; today (UTC) when omitted.

        Returns
        -------
        CircuitInput
            Fresh public input and private witness.

        Raises
        ------
        ClassificationError
            If an attribute is missing, malformed or ineligible for the census.
        """
        reference_date = reference_date or datetime.now(timezone.utc).date()

        try:
            date_of_birth, nationality = self._validate_record(record, reference_date)

            if not census.active:
                raise ClassificationError(
                    f"Census {census.census_id} is not accepting registrations",
                    reason=ClassificationFailure.CENSUS_INACTIVE,
                )

            classification = self.bucketizer.classify(
                date_of_birth,
                reference_date,
                nationality,
                min_age=census.min_age,
                allow_unknown_continent=(
                    census.allow_unknown_continent or not census.enable_location
                ),
            )

            if census.enable_location:
                continent = classification.continent
                bound_nationality: Optional[str] = nationality
            else:
                continent = Continent.UNKNOWN
                bound_nationality = None

            secret = self.nullifier_deriver.load_secret()
            try:
                nullifier_hash = derive_nullifier(secret, census.census_id)
            except Exception:
                secret.zeroize()
                raise

            public = PublicInput(
                census_id=census.census_id,
                age_range_code=int(classification.age_range),
                continent_code=int(continent),
                nullifier_hash=nullifier_hash,
            )
            witness = PrivateWitness(
                date_of_birth=date_of_birth,
                reference_date=reference_date,
                nationality=bound_nationality,
                secret=secret,
            )

            logger.info(
                "Circuit input built",
                census_id=census.census_id,
                age_range=classification.age_range.label,
                continent=continent.label,
                location_enabled=census.enable_location,
            )

            return CircuitInput(public=public, witness=witness)

        finally:
            record.wipe()

    def _validate_record(self, record: PassportRecord, reference_date: date):
        if record.is_wiped:
            raise _missing("passport_record")

        if not record.document_number:
            raise _missing("document_number")

        date_of_birth = _as_date(record.date_of_birth, "date_of_birth")

        if not record.nationality:
            raise _missing("nationality")
        nationality = normalize_country_code(record.nationality)
        if not _COUNTRY_CODE_PATTERN.match(nationality):
            raise _malformed("nationality", "expected 1-3 letters")

        if self.reject_expired_documents:
            expiry_date = _as_date(record.expiry_date, "expiry_date")
            if expiry_date < reference_date:
                raise ClassificationError(
                    "Passport expired before the reference date",
                    reason=ClassificationFailure.DOCUMENT_EXPIRED,
                    attribute="expiry_date",
                )

        return date_of_birth, nationality
