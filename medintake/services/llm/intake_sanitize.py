# medintake/services/llm/intake_sanitize.py
import json
import re
from typing import Any, Dict, List, Optional

from medintake.schemas.models import VALID_TIMES_OF_DAY, MedicationDraft
from medintake.services.llm.intake_prompt import COMPLETION_MARKER

REQUIRED_FIELDS = (
    "medication_name",
    "dosage",
    "dosage_unit",
    "frequency",
    "times_per_frequency",
    "preferred_time",
)

_INT_RE = re.compile(r"^[+-]?\d+$")

class PayloadValidationError(RuntimeError):
    def __init__(
        self,
        message: str,
        missing_fields: Optional[List[str]] = None,
        invalid_times: Optional[List[Any]] = None,
    ):
        super().__init__(message)
        self.missing_fields = missing_fields or []
        self.invalid_times = invalid_times or []

def split_completion(reply: str) -> Optional[str]:
    """Text after the completion marker, or None when the reply is still conversational."""
    if COMPLETION_MARKER not in (reply or ""):
        return None
    payload = reply.split(COMPLETION_MARKER, 2)[1]
    return payload.strip()

def _safe_json_parse(text: str) -> Dict[str, Any]:
    """Parse JSON even if model returns extra text."""
    text = (text or "").strip()
    try:
        data = json.loads(text)
    except (ValueError, RecursionError):
        data = None
        start = text.find("{")
        end = text.rfind("}")
        if start != -1 and end != -1 and end > start:
            try:
                data = json.loads(text[start : end + 1])
            except (ValueError, RecursionError):
                pass
    if not isinstance(data, dict):
        raise PayloadValidationError("Medication payload is not a JSON object")
    return data

def normalize_preferred_time(value: Any) -> List[Any]:
    if value is None:
        return []
    items = value if isinstance(value, list) else [value]
    out: List[Any] = []
    for v in items:
        if isinstance(v, str):
            v = v.strip().lower()
        if v not in out:
            out.append(v)
    return out

def coerce_times_per_frequency(value: Any) -> int:
    if isinstance(value, bool):
        raise PayloadValidationError(f"times_per_frequency is not a number: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise PayloadValidationError(f"times_per_frequency is not a whole number: {value!r}")
    s = str(value).strip()
    if _INT_RE.match(s):
        try:
            return int(s)
        except ValueError:
            # longer than the interpreter's int string limit
            raise PayloadValidationError("times_per_frequency is out of range") from None
    try:
        f = float(s)
    except ValueError:
        raise PayloadValidationError(f"times_per_frequency is not a number: {value!r}") from None
    if not f.is_integer():
        raise PayloadValidationError(f"times_per_frequency is not a whole number: {value!r}")
    return int(f)

def _text(value: Any) -> str:
    # models sometimes send 500 instead of "500"
    if value is None or isinstance(value, bool):
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()

def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list)):
        return len(value) == 0
    return value == 0 or value is False

def sanitize_medication_payload(raw: Dict[str, Any]) -> MedicationDraft:
    """
    Returns a validated draft or raises PayloadValidationError:
    - preferred_time is normalized to a de-duplicated list (lone value wrapped)
    - unknown preferred_time values are rejected by name
    - missing/empty required fields are rejected by name
    - times_per_frequency is coerced to a positive int
    """
    data = dict(raw)
    times = normalize_preferred_time(data.get("preferred_time"))
    data["preferred_time"] = times

    invalid = [t for t in times if t not in VALID_TIMES_OF_DAY]
    if invalid:
        raise PayloadValidationError(
            "Invalid preferred time values: "
            + ", ".join(str(t) for t in invalid)
            + ". Must be one of: " + ", ".join(VALID_TIMES_OF_DAY),
            invalid_times=invalid,
        )

    for key in ("medication_name", "dosage", "dosage_unit", "frequency"):
        data[key] = _text(data.get(key))
    if isinstance(data.get("times_per_frequency"), str):
        data["times_per_frequency"] = data["times_per_frequency"].strip()

    missing = [f for f in REQUIRED_FIELDS if _is_missing(data.get(f))]
    if missing:
        raise PayloadValidationError(
            f"Missing required fields: {', '.join(missing)}",
            missing_fields=missing,
        )

    count = coerce_times_per_frequency(data["times_per_frequency"])
    if count < 1:
        raise PayloadValidationError(
            f"times_per_frequency must be at least 1, got {count}",
            missing_fields=["times_per_frequency"],
        )

    remaining = _text(data.get("remaining_quantity"))
    notes = _text(data.get("notes"))

    return MedicationDraft(
        medication_name=data["medication_name"],
        dosage=data["dosage"],
        dosage_unit=data["dosage_unit"],
        frequency=data["frequency"],
        times_per_frequency=count,
        preferred_time=times,
        remaining_quantity=remaining or None,
        notes=notes or None,
    )

def parse_medication_payload(payload_text: str) -> MedicationDraft:
    return sanitize_medication_payload(_safe_json_parse(payload_text))
