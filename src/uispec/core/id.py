"""ID Generation.

ULID-based ids for engine instances and the asynchronous operations they
start. Each planning request, resolution/render pass and data fetch gets a
fresh id; completions compare their id with the engine's latest one and are
discarded when superseded.

- Timestamped: creation time is recoverable from the id
- Prefixed: type-specific prefixes keep logs readable (plan_*, pass_*, ...)
"""

from typing import NewType

from ulid import ULID

EngineID = NewType("EngineID", str)
"""Engine instance identifier"""

PlanID = NewType("PlanID", str)
"""Planning request identifier"""

PassID = NewType("PassID", str)
"""Resolution/render pass identifier"""

FetchID = NewType("FetchID", str)
"""Background data fetch identifier"""


class Prefix:
    """ID prefix constants."""

    ENGINE = "engine"
    PLAN = "plan"
    PASS = "pass"
    FETCH = "fetch"


class Generator:
    """ULID generator."""

    def generate(self) -> str:
        return str(ULID())

    def generate_with_prefix(self, prefix: str) -> str:
        return f"{prefix}_{self.generate()}"

    def timestamp(self, id_str: str) -> int:
        """Extract timestamp (milliseconds) from a (prefixed) ULID."""
        try:
            ulid_str = id_str.split("_")[1] if "_" in id_str else id_str
            return int(ULID.from_str(ulid_str).timestamp * 1000)
        except (ValueError, IndexError):
            return 0


_generator = Generator()


def new_engine_id() -> EngineID:
    return EngineID(_generator.generate_with_prefix(Prefix.ENGINE))


def new_plan_id() -> PlanID:
    return PlanID(_generator.generate_with_prefix(Prefix.PLAN))


def new_pass_id() -> PassID:
    return PassID(_generator.generate_with_prefix(Prefix.PASS))


def new_fetch_id() -> FetchID:
    return FetchID(_generator.generate_with_prefix(Prefix.FETCH))


def extract_timestamp(id_str: str) -> int:
    """Milliseconds since epoch encoded in an id, 0 if unparseable."""
    return _generator.timestamp(id_str)


__all__ = [
    "EngineID",
    "PlanID",
    "PassID",
    "FetchID",
    "Prefix",
    "Generator",
    "new_engine_id",
    "new_plan_id",
    "new_pass_id",
    "new_fetch_id",
    "extract_timestamp",
]
