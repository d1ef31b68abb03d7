"""
Constants and fixed tables for the zkcensus system.

This module centralizes the bucket partition tables, the country-to-continent
table and the cryptographic and retry parameters. Values that operators may
override at runtime live in ``config.py`` instead.
"""

from typing import Dict, Final, Tuple

# =============================================================================
# Age Partition
# =============================================================================

# Youngest and oldest ages the classifier accepts
MIN_SUPPORTED_AGE: Final[int] = 0
MAX_SUPPORTED_AGE: Final[int] = 130

# Inclusive (lower, upper) bounds per age range, indexed by range code.
# Contiguous and non-overlapping over MIN_SUPPORTED_AGE..MAX_SUPPORTED_AGE.
AGE_RANGE_BOUNDS: Final[Tuple[Tuple[int, int], ...]] = (
    (0, 17),
    (18, 24),
    (25, 34),
    (35, 44),
    (45, 54),
    (55, 64),
    (65, 130),
)

# =============================================================================
# Continent Table (ISO-3166 alpha-3)
# =============================================================================

CONTINENT_COUNTRIES: Final[Dict[str, Tuple[str, ...]]] = {
    "AFRICA": (
        "AGO", "ATF", "BDI", "BEN", "BFA", "BWA", "CAF", "CIV", "CMR", "COD",
        "COG", "COM", "CPV", "DJI", "DZA", "EGY", "ERI", "ESH", "ETH", "GAB",
        "GHA", "GIN", "GMB", "GNB", "GNQ", "IOT", "KEN", "LBR", "LBY", "LSO",
        "MAR", "MDG", "MLI", "MOZ", "MRT", "MUS", "MWI", "MYT", "NAM", "NER",
        "NGA", "REU", "RWA", "SDN", "SEN", "SHN", "SLE", "SOM", "SSD", "STP",
        "SWZ", "SYC", "TCD", "TGO", "TUN", "TZA", "UGA", "ZAF", "ZMB", "ZWE",
    ),
    "ASIA": (
        "AFG", "ARE", "ARM", "AZE", "BGD", "BHR", "BRN", "BTN", "CHN", "CYP",
        "GEO", "HKG", "IDN", "IND", "IRN", "IRQ", "ISR", "JOR", "JPN", "KAZ",
        "KGZ", "KHM", "KOR", "KWT", "LAO", "LBN", "LKA", "MAC", "MDV", "MMR",
        "MNG", "MYS", "NPL", "OMN", "PAK", "PHL", "PRK", "PSE", "QAT", "SAU",
        "SGP", "SYR", "THA", "TJK", "TKM", "TLS", "TUR", "TWN", "UZB", "VNM",
        "YEM",
    ),
    "EUROPE": (
        "ALA", "ALB", "AND", "AUT", "BEL", "BGR", "BIH", "BLR", "CHE", "CZE",
        "DEU", "DNK", "ESP", "EST", "FIN", "FRA", "FRO", "GBR", "GGY", "GIB",
        "GRC", "HRV", "HUN", "IMN", "IRL", "ISL", "ITA", "JEY", "LIE", "LTU",
        "LUX", "LVA", "MCO", "MDA", "MKD", "MLT", "MNE", "NLD", "NOR", "POL",
        "PRT", "ROU", "RUS", "SJM", "SMR", "SRB", "SVK", "SVN", "SWE", "UKR",
        "VAT", "XKX",
    ),
    "NORTH_AMERICA": (
        "ABW", "AIA", "ATG", "BES", "BHS", "BLM", "BLZ", "BMU", "BRB", "CAN",
        "CRI", "CUB", "CUW", "CYM", "DMA", "DOM", "GLP", "GRD", "GRL", "GTM",
        "HND", "HTI", "JAM", "KNA", "LCA", "MAF", "MEX", "MSR", "MTQ", "NIC",
        "PAN", "PRI", "SLV", "SPM", "SXM", "TCA", "TTO", "USA", "VCT", "VGB",
        "VIR",
    ),
    "SOUTH_AMERICA": (
        "ARG", "BOL", "BRA", "CHL", "COL", "ECU", "FLK", "GUF", "GUY", "PER",
        "PRY", "SGS", "SUR", "URY", "VEN",
    ),
    "OCEANIA": (
        "ASM", "AUS", "CCK", "COK", "CXR", "FJI", "FSM", "GUM", "HMD", "KIR",
        "MHL", "MNP", "NCL", "NFK", "NIU", "NRU", "NZL", "PCN", "PLW", "PNG",
        "PYF", "SLB", "TKL", "TON", "TUV", "UMI", "VUT", "WLF", "WSM",
    ),
}

# MRZ nationality codes that are not ISO-3166 alpha-3 country codes
MRZ_NATIONALITY_ALIASES: Final[Dict[str, str]] = {
    "D": "DEU",
    "GBD": "GBR",
    "GBN": "GBR",
    "GBO": "GBR",
    "GBP": "GBR",
    "GBS": "GBR",
}

# MRZ filler character
MRZ_FILLER: Final[str] = "<"

# =============================================================================
# Nullifier Parameters
# =============================================================================

# Length of the per-device nullifier secret in bytes
NULLIFIER_SECRET_LENGTH: Final[int] = 32

# Domain separation tag for nullifier derivation. Keep stable.
NULLIFIER_DOMAIN_TAG: Final[bytes] = b"zkcensus/nullifier/v1"

# =============================================================================
# Secret Store Parameters (Argon2id key derivation, AES-GCM at rest)
# =============================================================================

ARGON2_TIME_COST: Final[int] = 3
ARGON2_MEMORY_COST: Final[int] = 65536
ARGON2_PARALLELISM: Final[int] = 1
ARGON2_KEY_LENGTH: Final[int] = 32
ARGON2_SALT_LENGTH: Final[int] = 16

AES_GCM_NONCE_LENGTH: Final[int] = 12

SECRET_STORE_FORMAT_VERSION: Final[int] = 1

# =============================================================================
# ZK-Proof Parameters
# =============================================================================

SUPPORTED_PROOF_SYSTEMS: Final[Tuple[str, ...]] = ("groth16", "plonk")
SUPPORTED_SECURITY_LEVELS: Final[Tuple[int, ...]] = (128, 256)

# Constraint system capacity of the census circuit
ZK_CONSTRAINT_SYSTEM_SIZE: Final[int] = 64

# Length of commitment, nonce and tag proof elements in bytes
PROOF_ELEMENT_LENGTH: Final[int] = 32

# Proof size limit in bytes
MAX_PROOF_SIZE: Final[int] = 1024

# Proving work rounds between two cancellation checks
PROVING_CHUNK_ROUNDS: Final[int] = 256

# Domain separation tags for the proof transcript
PROOF_DOMAIN_TAG: Final[bytes] = b"zkcensus/proof/v1"
WITNESS_DOMAIN_TAG: Final[bytes] = b"zkcensus/witness/v1"

# =============================================================================
# Signing and Submission
# =============================================================================

SUBMISSION_MESSAGE_DOMAIN: Final[str] = "zkcensus/submission/v1"
CENSUS_CREATION_DOMAIN: Final[str] = "zkcensus/create-census/v1"
CENSUS_CLOSE_DOMAIN: Final[str] = "zkcensus/close-census/v1"
REGISTRATION_REVOKE_DOMAIN: Final[str] = "zkcensus/revoke-registration/v1"
AUTH_CHALLENGE_DOMAIN: Final[str] = "zkcensus/auth-challenge/v1"

# Length of one-time authentication challenges in bytes
AUTH_CHALLENGE_LENGTH: Final[int] = 32

# =============================================================================
# Output
# =============================================================================

DEFAULT_STATISTICS_FILE: Final[str] = "census_statistics"
DEFAULT_DISTRIBUTION_FILE: Final[str] = "census_distribution"
