"""Generate the obfuscated catalog fixture under `tests/assets/`.

Contract
- Input: the real catalog at `<repo>/assets/departments.csv`.
- Output: `<repo>/tests/assets/departments.csv`.
- Preserves:
  - header + row count
  - ids, regions, coordinates, area and population (grouping and hint logic depend on them)
  - a few sentinel names referenced by tests (accent-insensitive lookups)
  - one legacy region spelling, so the alias path is exercised
- Obfuscates:
  - display names and capitals
  - trivia (blanked)

Usage:
    uv run python scripts/generate_test_assets.py

This script is deterministic.
"""

from __future__ import annotations

from pathlib import Path

import pandas as pd

COLUMNS = ["id", "name", "region", "capital", "area", "population", "lat", "lng", "trivia"]

# Names that tests look up by their real (accented) spelling.
KEEP_NAMES = {
    "bogota": "Bogotá D.C.",
    "atlantico": "Atlántico",
}

# Rows whose region is written with an older spelling in the fixture.
LEGACY_REGIONS = {
    "choco": "Pacífico",
}


def _stable_token(prefix: str, i: int) -> str:
    return f"{prefix}-{i:04d}"


def obfuscate(df: pd.DataFrame) -> pd.DataFrame:
    out = df.copy()

    ids = out["id"].astype(str).tolist()
    names: list[str] = []
    capitals: list[str] = []
    regions = out["region"].astype(str).tolist()

    for idx, rid in enumerate(ids):
        names.append(KEEP_NAMES.get(rid, _stable_token("Dept", idx + 1)))
        capitals.append(_stable_token("Capital", idx + 1))
        if rid in LEGACY_REGIONS:
            regions[idx] = LEGACY_REGIONS[rid]

    out["name"] = names
    out["capital"] = capitals
    out["region"] = regions
    out["trivia"] = ""
    return out


def main() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    src = repo_root / "assets" / "departments.csv"
    dst_dir = repo_root / "tests" / "assets"
    dst_dir.mkdir(parents=True, exist_ok=True)

    if not src.exists():
        raise FileNotFoundError(f"Missing source asset: {src}")

    df = pd.read_csv(src, dtype={"id": str})
    if list(df.columns) != COLUMNS:
        raise ValueError(f"Unexpected columns in {src.name}: {list(df.columns)}")

    obfuscate(df).to_csv(dst_dir / "departments.csv", index=False)


if __name__ == "__main__":
    main()
