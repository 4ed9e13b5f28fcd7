"""
Substance catalog: reference entries offered when adding a substance.

Catalog data only seeds a new record (category, default dosage, interval,
daily maximum, description, warnings). After creation the record is
independent; evaluators never read the catalog.
"""

from typing import Optional

from dosetrack.core.timing_profiles import DEFAULT_REGISTRY

# name -> (category, default dosage, min hours between doses, max daily, description, warnings)
CATALOG = {
    "Alprazolam": (
        "Benzodiazepines", "0.5 mg", 8, 3,
        "Short-acting benzodiazepine used for anxiety and panic disorder.",
        "Highly addictive. Never combine with alcohol or opioids.",
    ),
    "Diazepam": (
        "Benzodiazepines", "5 mg", 12, 2,
        "Long-acting benzodiazepine used for anxiety and muscle spasm.",
        "Effects last long into the next day. Avoid other depressants.",
    ),
    "Amphetamine": (
        "Stimulants", "10 mg", 6, 2,
        "Central nervous system stimulant.",
        "Raises heart rate and body temperature. Eat and hydrate.",
    ),
    "Methylphenidate": (
        "Stimulants", "10 mg", 4, 3,
        "Stimulant used for ADHD.",
        "Avoid late doses to protect sleep.",
    ),
    "MDMA": (
        "Stimulants", "100 mg", 24, 1,
        "Empathogenic stimulant.",
        "Test your substances. Do not redose heavily. Wait weeks between uses.",
    ),
    "Cocaine": (
        "Stimulants", "30 mg", 1, 6,
        "Short-acting stimulant.",
        "High addiction potential. Stop if you feel chest pain.",
    ),
    "Caffeine": (
        "Stimulants", "100 mg", 3, 4,
        "Mild stimulant found in coffee, tea and mate.",
        "",
    ),
    "Ketamine": (
        "Dissociatives", "30 mg", 2, 3,
        "Dissociative anaesthetic.",
        "Use with a sitter. Never combine with depressants.",
    ),
    "Oxycodone": (
        "Opioids", "5 mg", 6, 4,
        "Opioid analgesic.",
        "Never use alone. Keep naloxone available. Do not mix with benzodiazepines.",
    ),
    "Codeine": (
        "Opioids", "30 mg", 6, 4,
        "Weak opioid, often combined with paracetamol.",
        "Watch the paracetamol daily maximum in combination products.",
    ),
}


def _entry(name: str, row: tuple) -> dict:
    category, dosage, min_hours, max_daily, description, warnings = row
    return {
        "name": name,
        "category": category,
        "dosage": dosage,
        "min_time_between_doses_hours": min_hours,
        "max_daily_doses": max_daily,
        "description": description,
        "warnings": warnings,
    }


_BY_KEY = {name.lower(): name for name in CATALOG}


def lookup(name: Optional[str]) -> Optional[dict]:
    """Catalog entry for a name (case-insensitive, aliases such as 'ritalin' resolved)."""
    if not name:
        return None
    key = name.strip().lower()
    canonical = _BY_KEY.get(key) or _BY_KEY.get(DEFAULT_REGISTRY.normalize_substance(key))
    if canonical is None:
        return None
    return _entry(canonical, CATALOG[canonical])


def search(query: str = "", category: Optional[str] = None) -> list[dict]:
    """Entries whose name or description contains `query`, optionally within one category."""
    needle = (query or "").strip().lower()
    wanted = DEFAULT_REGISTRY.normalize_category(category) if category and category != "all" else None
    results = []
    for name in sorted(CATALOG):
        entry = _entry(name, CATALOG[name])
        if wanted and entry["category"] != wanted:
            continue
        if needle and needle not in name.lower() and needle not in entry["description"].lower():
            continue
        results.append(entry)
    return results


def categories() -> list[str]:
    return sorted({row[0] for row in CATALOG.values()})
