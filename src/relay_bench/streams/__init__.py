from relay_bench.streams.base import (
    ChannelClosed,
    ConnectivityError,
    ObservationChannel,
    ObservationSource,
)

__all__ = ["ChannelClosed", "ConnectivityError", "ObservationChannel", "ObservationSource"]
