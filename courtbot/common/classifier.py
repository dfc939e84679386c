"""
Result classifier for portal responses

The portal reports every outcome as free Spanish text, either in the result
iframe or in the mobile endpoint's JSONP ``msg`` field. This module maps that
text onto a fixed set of statuses.

Rules are data: add a ClassificationRule to RULES to teach the classifier a new
wording. Order matters because failure wordings overlap, so SUCCESS is
checked first.
"""
import re
import unicodedata
from dataclasses import dataclass
from typing import Callable, Optional, Pattern, Sequence

from .models import ClaimOutcome, ClaimStatus

APP_MARKER = re.compile(r"<!--APP::(.*?)::APP-->", re.DOTALL)
DAYS_HINT = re.compile(r"(\d+)\s+dias?\s+(antes|previo|previos)")


@dataclass(frozen=True)
class ClassificationRule:
    status: ClaimStatus
    patterns: Sequence[Pattern[str]]
    message: str
    # every pattern in `required` must also match
    required: Sequence[Pattern[str]] = ()
    extract_days: Optional[Callable[[str], Optional[str]]] = None

    def matches(self, normalized: str) -> bool:
        if not any(p.search(normalized) for p in self.patterns):
            return False
        return all(p.search(normalized) for p in self.required)


def _days_before(normalized: str) -> Optional[str]:
    match = DAYS_HINT.search(normalized)
    return match.group(1) if match else None


RULES = (
    # "Su reservación se ha realizado con éxito y ya se encuentra aprobada."
    ClassificationRule(
        status=ClaimStatus.SUCCESS,
        patterns=(re.compile(r"se\s+ha\s+realizado.*exito"),),
        message="Reservation successful",
    ),
    # "Su reservación excede la cantidad máxima... ya existen otras reservaciones"
    ClassificationRule(
        status=ClaimStatus.SLOT_TAKEN,
        patterns=(
            re.compile(r"ya\s+existen\s+otras\s+reservaciones"),
            re.compile(r"excede\s+la\s+cantidad\s+maxima"),
        ),
        message="Time slot already taken - someone else reserved it first",
    ),
    # "No es posible ingresar la reservación, usted ya há sobrepasado el limite permitido"
    ClassificationRule(
        status=ClaimStatus.LIMIT_EXCEEDED,
        patterns=(
            re.compile(r"ya\s*ha\s*sobrepasado.*limite"),
            re.compile(r"sobrepasado.*limite\s+permitido"),
        ),
        message="Reservation limit exceeded - you have already used your allowed reservations",
    ),
    # "Esta fecha aún no está disponible para reservación. Las reservaciones
    #  serán habilitadas 8 días antes."
    ClassificationRule(
        status=ClaimStatus.NOT_YET_AVAILABLE,
        patterns=(
            re.compile(r"aun\s+no\s+esta\s+disponible"),
            re.compile(r"no\s+(esta|se\s+encuentra)\s+(disponible|habilitada)"),
        ),
        required=(re.compile(r"reservacion(es)?"),),
        message="Date not available yet",
        extract_days=_days_before,
    ),
)

STATUS_ICONS = {
    ClaimStatus.SUCCESS: "✅",
    ClaimStatus.SLOT_TAKEN: "⏱️",
    ClaimStatus.LIMIT_EXCEEDED: "🚫",
    ClaimStatus.NOT_YET_AVAILABLE: "📅",
    ClaimStatus.UNKNOWN: "❓",
}


def normalize(text: str) -> str:
    """Lowercase, strip diacritics (é→e) and collapse whitespace"""
    decomposed = unicodedata.normalize("NFD", text.lower())
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    return re.sub(r"\s+", " ", stripped).strip()


def classify(raw_text: Optional[str], source: Optional[str] = None) -> ClaimOutcome:
    """
    Classify a raw portal response.

    Never raises: empty input and unmatched text both come back as UNKNOWN,
    the latter with the raw text preserved for inspection.
    """
    if not raw_text or not raw_text.strip():
        return ClaimOutcome(
            status=ClaimStatus.UNKNOWN,
            message="No response content found",
            raw_message="",
            source=source,
        )

    normalized = normalize(raw_text)

    for rule in RULES:
        if not rule.matches(normalized):
            continue
        days = rule.extract_days(normalized) if rule.extract_days else None
        message = rule.message
        if rule.status == ClaimStatus.NOT_YET_AVAILABLE:
            message = f"{message} - reservations open {days or '?'} days before"
        return ClaimOutcome(
            status=rule.status,
            message=message,
            raw_message=raw_text,
            days=days,
            source=source,
        )

    return ClaimOutcome(
        status=ClaimStatus.UNKNOWN,
        message=f'Could not classify response: "{raw_text.strip()}"',
        raw_message=raw_text,
        source=source,
    )


def extract_result_text(html: Optional[str], fallback_text: Optional[str] = None) -> str:
    """
    Pull the canonical message out of a result page.

    The portal embeds it as <!--APP::...::APP-->; pages without the marker
    (display_reservation.php) fall back to their visible text.
    """
    if html:
        match = APP_MARKER.search(html)
        if match and match.group(1).strip():
            return match.group(1).strip()
    return (fallback_text or "").strip()


def status_icon(status: ClaimStatus) -> str:
    return STATUS_ICONS.get(status, "❓")
