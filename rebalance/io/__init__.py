"""Price data sources and share links."""

from rebalance.io.csv_reader import read_csv_from_str
from rebalance.io.historic import HISTORIC_PRESETS, HistoricDataProvider, resolve_preset
from rebalance.io.sharelink import (
    URL_READ_SHARELINK,
    URL_WRITE_SHARELINK,
    ResponsePayload,
    ShareLinkClient,
    sessionid_from_link,
    sessionid_to_link,
)

__all__ = [
    "HISTORIC_PRESETS",
    "HistoricDataProvider",
    "ResponsePayload",
    "ShareLinkClient",
    "URL_READ_SHARELINK",
    "URL_WRITE_SHARELINK",
    "read_csv_from_str",
    "resolve_preset",
    "sessionid_from_link",
    "sessionid_to_link",
]
