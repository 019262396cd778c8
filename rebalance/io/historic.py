"""Historic index price developments with local cache support."""

from __future__ import annotations

import logging
from pathlib import Path
from urllib.error import URLError
from urllib.request import Request, urlopen

from rebalance.core.charts import Chart
from rebalance.io.csv_reader import read_csv_from_str

LOGGER = logging.getLogger(__name__)

BASE_URL = "https://www.bertiqwerty.com/data"

HISTORIC_PRESETS: dict[str, tuple[str, str]] = {
    "msciacwi": ("MSCI ACWI", "msciacwi.csv"),
    "msciworld": ("MSCI World", "msciworld.csv"),
    "msciem": ("MSCI EM", "msciem.csv"),
    "mscieurope": ("MSCI Europe", "mscieurope.csv"),
    "sandp500": ("S&P 500", "sandp500.csv"),
}


class HistoricDataProvider:
    """Load monthly index developments from the data endpoint with on-disk caching.

    Presets are addressed by key (`msciworld`), display name (`MSCI World`) or
    file name (`msciworld.csv`).
    """

    def __init__(
        self,
        base_url: str = BASE_URL,
        cache_dir: str | Path = "data/cache",
        auto_download: bool = True,
        request_timeout_sec: float = 20.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.cache_dir = Path(cache_dir)
        self.auto_download = auto_download
        self.request_timeout_sec = request_timeout_sec
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    def get_chart(self, preset: str) -> Chart:
        """Fetch a preset price development from cache or the data endpoint."""
        name, filename = resolve_preset(preset)
        cache_path = self.cache_dir / filename

        if not cache_path.exists():
            if not self.auto_download:
                msg = f"Cached file not found and auto_download is disabled: {cache_path}"
                raise FileNotFoundError(msg)
            csv_text = self._download_csv_text(filename=filename)
            cache_path.write_text(csv_text, encoding="utf-8")
            LOGGER.info("Downloaded %s to %s", filename, cache_path)

        dates, values = read_csv_from_str(cache_path.read_text(encoding="utf-8"))
        return Chart(name=name, dates=dates, values=values)

    def _download_csv_text(self, filename: str) -> str:
        url = f"{self.base_url}/{filename}"
        request = Request(url=url, headers={"User-Agent": "rebalance/0.1"})

        try:
            with urlopen(request, timeout=self.request_timeout_sec) as response:
                csv_text = response.read().decode("utf-8")
        except URLError as error:
            msg = f"Failed to download {filename} from {self.base_url}."
            raise RuntimeError(msg) from error

        if not csv_text.strip():
            msg = f"Received empty CSV response for {filename}."
            raise RuntimeError(msg)
        return csv_text


def resolve_preset(preset: str) -> tuple[str, str]:
    """Return `(display name, file name)` of a historic preset."""
    raw_preset = preset.strip()
    normalized = raw_preset.lower().removesuffix(".csv")
    if normalized in HISTORIC_PRESETS:
        return HISTORIC_PRESETS[normalized]
    for name, filename in HISTORIC_PRESETS.values():
        if name.lower() == raw_preset.lower():
            return name, filename
    options = ", ".join(sorted(HISTORIC_PRESETS))
    msg = f"Unknown historic preset '{preset}'. Available: {options}"
    raise ValueError(msg)
