"""Tagged validation result shared by every validation-adjacent engine call."""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

OK = "ok"
WARNING = "warning"
ERROR = "error"

_SEVERITY = {OK: 0, WARNING: 1, ERROR: 2}


@dataclass(frozen=True)
class Outcome:
    status: str                     # ok | warning | error
    code: str = ""
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_ok(self) -> bool:
        return self.status == OK

    @property
    def is_warning(self) -> bool:
        return self.status == WARNING

    @property
    def is_error(self) -> bool:
        return self.status == ERROR

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "code": self.code,
            "message": self.message,
            "details": dict(self.details),
        }

    @staticmethod
    def worst(outcomes: Iterable["Outcome"]) -> "Outcome":
        """Most severe outcome of a collection (first one wins on ties)."""
        result = ok()
        for outcome in outcomes:
            if _SEVERITY[outcome.status] > _SEVERITY[result.status]:
                result = outcome
        return result


def ok() -> Outcome:
    return Outcome(OK)


def warning(code: str, message: str, **details) -> Outcome:
    return Outcome(WARNING, code, message, details)


def error(code: str, message: str, **details) -> Outcome:
    return Outcome(ERROR, code, message, details)


def non_ok(outcomes: Iterable[Outcome]) -> List[Outcome]:
    return [o for o in outcomes if not o.is_ok]
