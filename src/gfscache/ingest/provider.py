from __future__ import annotations

from datetime import datetime
from typing import Dict

from ..config import ProviderSettings
from ..util.time import truncate


def cycle_dir(cycle: datetime) -> str:
    cycle = truncate(cycle)
    return f"/gfs.{cycle:%Y%m%d}/{cycle:%H}/atmos"


def cycle_file(cycle: datetime, product: str) -> str:
    return f"gfs.t{truncate(cycle):%H}z.{product}.f000"


def build_params(cycle: datetime, provider: ProviderSettings) -> Dict[str, str]:
    """Query string for the NOMADS grib filter, covering the whole globe."""
    params: Dict[str, str] = {"file": cycle_file(cycle, provider.product)}
    for level in provider.levels:
        params[f"lev_{level}"] = "on"
    for variable in provider.variables:
        params[f"var_{variable}"] = "on"
    params.update(
        {
            "leftlon": "0",
            "rightlon": "360",
            "toplat": "90",
            "bottomlat": "-90",
            "dir": cycle_dir(cycle),
        }
    )
    return params
