"""
Stage 4: Inventory Reconciler — cross-references prescribed medications
with the pharmacy's live stock catalog.
No LLM call needed; this is pure search + matching logic.

Matching:
  - Annotation uses case-insensitive containment against the stock item's
    generic name (either direction), brand name as fallback; first match
    in catalog order wins.
  - A scored matcher (token overlap + edit similarity + strength agreement)
    ranks every candidate so ambiguous matches can be shown to the user
    instead of being resolved silently.

Never errors the pipeline: every medication gets an annotation.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from difflib import SequenceMatcher
from typing import Callable

from rx_fulfillment.config import settings
from rx_fulfillment.models.inventory import (
    MatchCandidate,
    MedicationMatch,
    ReconciliationReport,
    StockItem,
)
from rx_fulfillment.models.prescription import AnalyzedPrescription, PrescribedMedication

logger = logging.getLogger(__name__)

StockSearch = Callable[[str], list[StockItem]]
AlternativeLookup = Callable[[PrescribedMedication], list[str]]

# Common substitutes available in Bangladesh, keyed by generic name.
DEFAULT_ALTERNATIVES: dict[str, list[str]] = {
    "paracetamol": ["Napa", "Ace", "Para", "Renova"],
    "omeprazole": ["Seclo", "Losectil", "Omep", "Gastrocure"],
    "metformin": ["Diabex", "Glycomet", "Formet", "Metformin"],
    "amoxicillin": ["Moxacil", "Amoxil", "Novamox", "Polymox"],
}

_NUMBER = re.compile(r"\d+(?:\.\d+)?")


# ── Text normalization ────────────────────────────────────────

def normalize(text: str | None) -> str:
    """Remove accents, lowercase, strip."""
    text = unicodedata.normalize("NFD", text or "")
    text = re.sub(r"[\u0300-\u036f]", "", text)
    return text.lower().strip()


def tokenize(text: str | None) -> list[str]:
    """Split normalized text into alphanumeric words > 1 char."""
    return [t for t in re.split(r"[^a-z0-9.]+", normalize(text)) if len(t) > 1]


def jaccard_similarity(a: list[str], b: list[str]) -> float:
    set_a, set_b = set(a), set(b)
    union = len(set_a | set_b)
    return len(set_a & set_b) / union if union > 0 else 0.0


def _contains_either_way(query: str, target: str) -> bool:
    if not query or not target:
        return False
    return query in target or target in query


# ── Matching ──────────────────────────────────────────────────

def find_stock_match(medication: PrescribedMedication, items: list[StockItem]) -> StockItem | None:
    """First item (catalog order) whose generic name matches by containment; brand name second."""
    queries = [q for q in (normalize(medication.name), normalize(medication.generic_name)) if q]

    for item in items:
        generic = normalize(item.generic_name)
        if any(_contains_either_way(q, generic) for q in queries):
            return item

    for item in items:
        brand = normalize(item.brand_name)
        if any(_contains_either_way(q, brand) for q in queries):
            return item

    return None


def _strength_agreement(dosage: str, strength: str | None) -> float | None:
    """1.0 if the numeric strengths agree, 0.0 if they differ, None if either is unknown."""
    wanted = _NUMBER.findall(dosage or "")
    have = _NUMBER.findall(strength or "")
    if not wanted or not have:
        return None
    return 1.0 if float(wanted[0]) == float(have[0]) else 0.0


def score_candidate(medication: PrescribedMedication, item: StockItem) -> float:
    best = 0.0
    for query in (medication.name, medication.generic_name):
        if not query:
            continue
        q_norm, q_tokens = normalize(query), tokenize(query)
        for target in (item.generic_name, item.brand_name):
            if not target:
                continue
            t_norm = normalize(target)
            score = (
                0.5 * jaccard_similarity(q_tokens, tokenize(target))
                + 0.4 * SequenceMatcher(None, q_norm, t_norm).ratio()
            )
            if _contains_either_way(q_norm, t_norm):
                score += 0.2
            best = max(best, score)

    agreement = _strength_agreement(medication.dosage, item.strength)
    if agreement is not None:
        best += 0.1 if agreement else -0.1
    return round(min(1.0, max(0.0, best)), 4)


def rank_candidates(
    medication: PrescribedMedication,
    items: list[StockItem],
    min_score: float | None = None,
) -> list[MatchCandidate]:
    """All catalog items scoring at least `min_score`, best first."""
    threshold = settings.MATCH_MIN_SCORE if min_score is None else min_score
    scored = [MatchCandidate(stock_item=item, score=score_candidate(medication, item)) for item in items]
    ranked = [c for c in scored if c.score >= threshold]
    ranked.sort(key=lambda c: c.score, reverse=True)
    return ranked


def default_alternatives(medication: PrescribedMedication) -> list[str]:
    for key in (normalize(medication.generic_name), normalize(medication.name)):
        if key in DEFAULT_ALTERNATIVES:
            return list(DEFAULT_ALTERNATIVES[key])
    return []


def _search_terms(medication: PrescribedMedication) -> list[str]:
    terms: list[str] = []
    first_word = medication.name.split()[0] if medication.name.split() else ""
    for term in (medication.name, medication.generic_name, first_word):
        term = (term or "").strip()
        if term and term.lower() not in (t.lower() for t in terms):
            terms.append(term)
    return terms


def collect_candidates(medication: PrescribedMedication, search: StockSearch) -> list[StockItem]:
    """Union of search results for every term, catalog order preserved, no duplicates."""
    seen: set[str] = set()
    items: list[StockItem] = []
    for term in _search_terms(medication):
        for item in search(term):
            key = item.id or item.medicine_id
            if key not in seen:
                seen.add(key)
                items.append(item)
    return items


# ── Public API ────────────────────────────────────────────────

def reconcile_inventory(
    prescription: AnalyzedPrescription,
    search: StockSearch,
    alternatives: AlternativeLookup | None = None,
    ambiguity_margin: float | None = None,
) -> ReconciliationReport:
    """
    Annotate every medication with found_in_stock / stock_quantity /
    alternative_medicines. Always returns a report, even if searches fail.
    """
    alternatives = alternatives or default_alternatives
    margin = settings.MATCH_AMBIGUITY_MARGIN if ambiguity_margin is None else ambiguity_margin
    report = ReconciliationReport()

    for med in prescription.medications:
        try:
            items = collect_candidates(med, search)
        except Exception as exc:
            logger.error("Stock search failed for '%s': %s", med.name, exc, exc_info=True)
            report.warnings.append(f"Stock lookup failed for '{med.name}': {exc}")
            items = []

        match = find_stock_match(med, items)
        if match:
            med.mark_found(match.quantity)
            report.matched += 1
            logger.info("Stock match: %s → %s (qty=%d)", med.name, match.generic_name, match.quantity)
        else:
            try:
                alts = alternatives(med)
            except Exception as exc:
                logger.warning("Alternative lookup failed for '%s': %s", med.name, exc)
                alts = []
            med.mark_missing(alts)
            report.missing += 1
            logger.info("No stock match for: %s (%d alternatives)", med.name, len(alts))

        ranked = rank_candidates(med, items)
        if len(ranked) >= 2 and ranked[0].score - ranked[1].score < margin:
            report.ambiguous.append(MedicationMatch(medication=med.name, candidates=ranked, ambiguous=True))
            report.warnings.append(
                f"Ambiguous stock match for '{med.name}': "
                f"{ranked[0].stock_item.generic_name} vs {ranked[1].stock_item.generic_name}"
            )

    logger.info(
        "Inventory reconciliation: %d matched, %d missing, %d ambiguous",
        report.matched, report.missing, len(report.ambiguous),
    )
    return report
