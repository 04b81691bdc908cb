"""Residual-gas knowledge base.

Cracking patterns are 70 eV electron-impact fragment intensities relative
to the base peak (= 100). Relative sensitivity factors (RSF) are relative to
N₂ = 1.0. Sources: CERN CAS vacuum tutorial, NIST WebBook, Pfeiffer, Hiden
and SRS application notes.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from rga_app.engine.plugin_api import GasFraction, Peak

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GasSpecies:
    key: str
    name: str
    formula: str
    main_mass: int
    cracking_pattern: Mapping[int, float]
    relative_sensitivity: float
    category: str
    notes: Tuple[str, ...] = ()


@dataclass(frozen=True)
class MassAssignment:
    mass: int
    label: str
    sources: Tuple[str, ...] = ()


@dataclass(frozen=True)
class IsotopeRatio:
    name: str
    numerator: int
    denominator: int
    expected: float
    tolerance: float


@dataclass(frozen=True)
class IsotopeRatioResult:
    name: str
    observed: Optional[float]
    expected: float
    tolerance: float
    consistent: bool
    details: Dict[str, float] = field(default_factory=dict)


def _gas(key, name, formula, main_mass, pattern, rsf, category, *notes) -> GasSpecies:
    return GasSpecies(key, name, formula, main_mass, dict(pattern), rsf, category, tuple(notes))


GAS_LIBRARY: Tuple[GasSpecies, ...] = (
    # permanent and noble gases
    _gas("H2", "Hydrogen", "H₂", 2, {2: 100, 1: 5}, 0.44, "permanent",
         "Dominant residual gas in baked UHV systems"),
    _gas("D2", "Deuterium", "D₂", 4, {4: 100, 3: 15, 2: 5}, 0.42, "permanent",
         "m/z 4 overlaps with He"),
    _gas("HD", "Hydrogen-Deuterium", "HD", 3, {3: 100, 2: 30, 1: 8, 4: 2}, 0.43, "permanent"),
    _gas("He", "Helium", "He", 4, {4: 100}, 0.14, "noble", "Leak-test tracer gas"),
    _gas("Ne", "Neon", "Ne", 20, {20: 100, 22: 9.9, 21: 0.3}, 0.23, "noble",
         "Can be confused with Ar²⁺"),
    _gas("N2", "Nitrogen", "N₂", 28, {28: 100, 14: 7.2, 29: 0.7}, 1.0, "permanent",
         "Sensitivity reference gas"),
    _gas("O2", "Oxygen", "O₂", 32, {32: 100, 16: 11, 34: 0.4}, 0.86, "permanent",
         "Air leak indicator"),
    _gas("Ar", "Argon", "Ar", 40, {40: 100, 20: 14.6, 36: 0.34, 38: 0.06}, 1.2, "noble",
         "Ar²⁺ at m/z 20", "Best air-leak evidence"),
    _gas("Kr", "Krypton", "Kr", 84, {84: 100, 86: 30.5, 82: 20.3, 83: 11.5, 80: 2.3}, 1.7, "noble"),
    _gas("Xe", "Xenon", "Xe", 132, {132: 100, 129: 98, 131: 79, 134: 39, 136: 33, 130: 15}, 3.0, "noble"),
    # water
    _gas("H2O", "Water", "H₂O", 18, {18: 100, 17: 23, 16: 1.5, 1: 0.5, 2: 0.3, 19: 0.06, 20: 0.2},
         0.9, "water", "Dominant in unbaked systems", "18/17 ratio ~4.3"),
    # carbon oxides
    _gas("CO", "Carbon Monoxide", "CO", 28, {28: 100, 12: 4.5, 16: 1.7, 14: 1.0, 29: 1.2}, 1.05,
         "carbon_oxide", "Not directly separable from N₂; check m/z 12"),
    _gas("CO2", "Carbon Dioxide", "CO₂", 44,
         {44: 100, 28: 10, 16: 10, 12: 8.7, 22: 1.9, 45: 1.1, 46: 0.4}, 1.4, "carbon_oxide",
         "Contributes to m/z 28"),
    # hydrocarbons
    _gas("CH4", "Methane", "CH₄", 16, {16: 100, 15: 85, 14: 16, 13: 8, 12: 3.8, 1: 4, 17: 1.1},
         1.6, "hydrocarbon", "m/z 15 is free of O⁺ overlap"),
    _gas("C2H2", "Acetylene", "C₂H₂", 26, {26: 100, 25: 20, 13: 5, 27: 3, 54: 5}, 1.8, "hydrocarbon"),
    _gas("C2H4", "Ethylene", "C₂H₄", 28, {28: 100, 27: 62, 26: 61, 25: 12, 14: 8}, 1.9, "hydrocarbon"),
    _gas("C2H6", "Ethane", "C₂H₆", 28, {28: 100, 27: 33, 30: 26, 29: 22, 26: 23, 25: 3.5, 15: 4.4},
         2.6, "hydrocarbon"),
    _gas("C3H8", "Propane", "C₃H₈", 29,
         {29: 100, 28: 59, 27: 42, 44: 28, 43: 23, 41: 13, 39: 19, 15: 7}, 2.4, "hydrocarbon",
         "Peak at m/z 44 like CO₂"),
    _gas("C3H6", "Propylene", "C₃H₆", 41, {41: 100, 39: 73, 42: 69, 27: 38, 40: 29}, 2.2, "hydrocarbon"),
    _gas("Butane", "Butane", "C₄H₁₀", 43,
         {43: 100, 29: 44, 27: 37, 28: 32, 41: 27, 58: 13, 42: 11, 39: 8}, 2.6, "hydrocarbon"),
    # solvents
    _gas("Acetone", "Acetone", "C₃H₆O", 43, {43: 100, 58: 27, 15: 42, 27: 8}, 3.6, "solvent"),
    _gas("Methanol", "Methanol", "CH₃OH", 31, {31: 100, 32: 67, 29: 65, 28: 3.4, 15: 14}, 1.8, "solvent"),
    _gas("Ethanol", "Ethanol", "C₂H₅OH", 31, {31: 100, 45: 52, 46: 22, 29: 30, 27: 22, 43: 10},
         3.6, "solvent"),
    _gas("IPA", "Isopropanol", "C₃H₇OH", 45, {45: 100, 43: 17, 27: 16, 29: 10, 41: 7}, 2.5, "solvent"),
    _gas("Benzene", "Benzene", "C₆H₆", 78, {78: 100, 77: 22, 52: 19, 51: 19, 50: 17, 39: 12},
         5.9, "solvent"),
    _gas("Toluene", "Toluene", "C₇H₈", 91, {91: 100, 92: 69, 65: 16, 51: 10, 39: 14}, 6.2, "solvent"),
    # pump oils
    _gas("MineralOil", "Mineral Oil (Forepump)", "CₓHᵧ", 43,
         {43: 100, 41: 91, 57: 73, 55: 64, 71: 20, 29: 44, 27: 37, 39: 50}, 4.0, "oil",
         "Forepump backstreaming"),
    _gas("TurbopumpOil", "Turbopump Oil", "CₓHᵧ", 43,
         {43: 100, 57: 88, 41: 76, 55: 73, 71: 52, 69: 35, 85: 25}, 4.0, "oil"),
    _gas("Fomblin", "Fomblin/PFPE", "PFPE", 69,
         {69: 100, 20: 28, 16: 16, 31: 9, 47: 15, 50: 12, 97: 8, 119: 5}, 3.5, "oil",
         "CF₃⁺ at 69 without alkyl peaks"),
    # halogens and process gases
    _gas("HCl", "Hydrochloric Acid", "HCl", 36, {36: 100, 38: 32, 35: 17}, 1.5, "halogen"),
    _gas("HF", "Hydrofluoric Acid", "HF", 20, {20: 100, 19: 90}, 1.0, "halogen"),
    _gas("CF4", "Carbon Tetrafluoride", "CF₄", 69, {69: 100, 50: 12, 31: 7}, 2.0, "halogen"),
    _gas("Cl2", "Chlorine", "Cl₂", 70, {70: 100, 72: 65, 35: 75, 37: 24, 74: 10}, 1.5, "halogen"),
    _gas("SF6", "Sulfur Hexafluoride", "SF₆", 127, {127: 100, 89: 25, 70: 15, 51: 10, 32: 8},
         2.5, "halogen"),
    # sulfur and nitrogen compounds
    _gas("H2S", "Hydrogen Sulfide", "H₂S", 34, {34: 100, 33: 42, 32: 44, 36: 4.5}, 2.2, "sulfur"),
    _gas("SO2", "Sulfur Dioxide", "SO₂", 64, {64: 100, 48: 49, 32: 10, 16: 5, 66: 5}, 2.1, "sulfur"),
    _gas("NH3", "Ammonia", "NH₃", 17, {17: 100, 16: 80, 15: 8, 14: 2}, 1.3, "nitrogen_compound",
         "Base peak at 17 like OH⁺ from water"),
    _gas("NO", "Nitric Oxide", "NO", 30, {30: 100, 14: 7, 15: 2}, 1.1, "nitrogen_compound"),
    _gas("N2O", "Nitrous Oxide", "N₂O", 44, {44: 100, 30: 31, 28: 11, 14: 13, 16: 5}, 1.5,
         "nitrogen_compound"),
    # silicone
    _gas("PDMS", "Polydimethylsiloxane", "(CH₃)₃SiO-", 73, {73: 100, 147: 50, 45: 30, 59: 20, 28: 10},
         4.0, "silicone", "Trimethylsilyl fragment at 73"),
)

GAS_BY_KEY: Dict[str, GasSpecies] = {gas.key: gas for gas in GAS_LIBRARY}

SENSITIVITY_FACTORS: Dict[str, float] = {gas.key: gas.relative_sensitivity for gas in GAS_LIBRARY}

MASS_ASSIGNMENTS: Dict[int, MassAssignment] = {
    item.mass: item
    for item in (
        MassAssignment(1, "H⁺", ("H₂",)),
        MassAssignment(2, "H₂"),
        MassAssignment(4, "He"),
        MassAssignment(12, "C⁺", ("CO", "CO₂", "Hydrocarbons")),
        MassAssignment(14, "N⁺", ("N₂",)),
        MassAssignment(16, "O⁺", ("O₂", "H₂O", "CO₂")),
        MassAssignment(17, "OH⁺", ("H₂O",)),
        MassAssignment(18, "H₂O"),
        MassAssignment(19, "F⁺/H₃O⁺", ("Fluorine compounds", "H₂O")),
        MassAssignment(20, "Ar²⁺/Ne/HF", ("Ar", "Ne", "HF")),
        MassAssignment(28, "N₂/CO"),
        MassAssignment(29, "N₂-Isotope/CHO⁺", ("N₂", "Hydrocarbons")),
        MassAssignment(31, "CF⁺", ("Fluorine compounds",)),
        MassAssignment(32, "O₂"),
        MassAssignment(35, "³⁵Cl⁺", ("Chlorine compounds",)),
        MassAssignment(36, "HCl/³⁶Ar", ("HCl", "Ar isotope")),
        MassAssignment(40, "Ar"),
        MassAssignment(44, "CO₂"),
        MassAssignment(45, "¹³CO₂/CHO₂⁺", ("CO₂ isotope", "Hydrocarbons")),
        MassAssignment(50, "CF₂⁺", ("Fluorine compounds",)),
        MassAssignment(69, "CF₃⁺", ("Fluorine compounds", "Hydrocarbons")),
        MassAssignment(77, "C₆H₅⁺", ("Aromatics", "Hydrocarbons")),
    )
}

# Label of a parent peak -> library keys whose cracking fragments are listed.
_PARENT_GASES: Dict[str, Tuple[str, ...]] = {
    "H₂": ("H2",),
    "H₂O": ("H2O",),
    "N₂/CO": ("N2", "CO"),
    "O₂": ("O2",),
    "Ar": ("Ar",),
    "CO₂": ("CO2",),
}

ISOTOPE_RATIOS: Dict[str, IsotopeRatio] = {
    "argon": IsotopeRatio("argon", 40, 36, 298.0, 50.0),
    "chlorine": IsotopeRatio("chlorine", 35, 37, 3.1, 0.3),
    "sulfur": IsotopeRatio("sulfur", 32, 34, 22.5, 3.0),
    "silicon": IsotopeRatio("silicon", 28, 29, 19.6, 3.0),
    "krypton": IsotopeRatio("krypton", 84, 86, 3.3, 0.5),
}

_SORTED_MASSES: Tuple[int, ...] = tuple(sorted(MASS_ASSIGNMENTS))


def identify_mass(mass: float, tolerance: float = 0.5) -> Optional[MassAssignment]:
    """Return the assignment of the nearest known mass within ``tolerance``.

    Equidistant candidates resolve to the lower mass.
    """

    if mass is None or not math.isfinite(mass):
        return None
    best: Optional[int] = None
    best_distance = math.inf
    for known in _SORTED_MASSES:
        distance = abs(known - mass)
        if distance <= tolerance and distance < best_distance:
            best = known
            best_distance = distance
    return MASS_ASSIGNMENTS.get(best) if best is not None else None


def gases_with_peak_at(mass: int) -> List[Tuple[GasSpecies, float]]:
    """Library gases whose cracking pattern contains ``mass``, strongest first."""

    hits = [
        (gas, float(gas.cracking_pattern[mass]))
        for gas in GAS_LIBRARY
        if mass in gas.cracking_pattern
    ]
    return sorted(hits, key=lambda item: item[1], reverse=True)


def scaled_pattern(key: str, base: float) -> Dict[int, float]:
    gas = GAS_BY_KEY.get(key)
    if gas is None:
        return {}
    return {mass: intensity / 100.0 * base for mass, intensity in gas.cracking_pattern.items()}


def fragments_for(assignment: MassAssignment, detected_masses: Iterable[int]) -> Tuple[str, ...]:
    """Cross-reference fragments for an identified peak.

    Fragment ions report the gases that produce them. Parent peaks report
    which of their cracking fragments were also detected.
    """

    if assignment.sources:
        return assignment.sources
    detected = set(detected_masses)
    fragments: List[str] = []
    for key in _PARENT_GASES.get(assignment.label, ()):
        gas = GAS_BY_KEY[key]
        for frag_mass in sorted(gas.cracking_pattern):
            if frag_mass == gas.main_mass or frag_mass not in detected:
                continue
            label = MASS_ASSIGNMENTS.get(frag_mass)
            text = label.label if label else f"m/z {frag_mass}"
            if text not in fragments:
                fragments.append(text)
    return tuple(fragments)


def isotope_ratio_check(integrals: Mapping[int, float], name: str) -> IsotopeRatioResult:
    """Compare an observed isotope ratio with its natural abundance ratio."""

    ratio = ISOTOPE_RATIOS.get(name.lower())
    if ratio is None:
        raise KeyError(f"Unknown isotope ratio: {name}")
    numerator = float(integrals.get(ratio.numerator, 0.0) or 0.0)
    denominator = float(integrals.get(ratio.denominator, 0.0) or 0.0)
    if denominator <= 0 or numerator <= 0:
        return IsotopeRatioResult(
            name=ratio.name,
            observed=None,
            expected=ratio.expected,
            tolerance=ratio.tolerance,
            consistent=False,
            details={"numerator": numerator, "denominator": denominator},
        )
    observed = numerator / denominator
    return IsotopeRatioResult(
        name=ratio.name,
        observed=observed,
        expected=ratio.expected,
        tolerance=ratio.tolerance,
        consistent=abs(observed - ratio.expected) <= ratio.tolerance,
        details={"numerator": numerator, "denominator": denominator},
    )


def _rsf_for_label(label: str) -> float:
    for gas in GAS_LIBRARY:
        if gas.formula == label:
            return gas.relative_sensitivity
    keys = _PARENT_GASES.get(label)
    if keys:
        return GAS_BY_KEY[keys[0]].relative_sensitivity
    return 1.0


def dominant_gases(peaks: Sequence[Peak], top: int = 5) -> List[GasFraction]:
    """Share of each peak's integral in the summed integral of all peaks."""

    total = sum(p.integrated_current for p in peaks if p.integrated_current > 0)
    if total <= 0:
        return []
    fractions = [
        GasFraction(p.gas_identification, p.integrated_current / total * 100.0)
        for p in peaks
        if p.integrated_current > 0
    ]
    fractions.sort(key=lambda item: item.percentage, reverse=True)
    return fractions[:top]


def rsf_corrected_fractions(peaks: Sequence[Peak], top: int = 5) -> List[GasFraction]:
    """Like :func:`dominant_gases` but with each integral divided by its RSF."""

    corrected: List[Tuple[str, float]] = []
    for peak in peaks:
        if peak.integrated_current <= 0:
            continue
        rsf = _rsf_for_label(peak.gas_identification)
        corrected.append((peak.gas_identification, peak.integrated_current / rsf))
    total = sum(value for _, value in corrected)
    if total <= 0:
        return []
    fractions = [GasFraction(label, value / total * 100.0) for label, value in corrected]
    fractions.sort(key=lambda item: item.percentage, reverse=True)
    return fractions[:top]
