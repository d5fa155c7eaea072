# arbwatch/venues.py
from dataclasses import dataclass
from typing import Callable, Dict, List, Type

from .config import ArbitrageConfig, VenueConfig
from .decoders import BinanceDecoder, HuobiDecoder, QuoteDecoder
from .errors import ConfigurationError
from .models import now_ms


@dataclass
class VenueAdapter:
    """Everything a connector needs to know about one venue: where to dial and how to read it."""
    name: str
    url: str
    decoder: QuoteDecoder


DECODERS: Dict[str, Type[QuoteDecoder]] = {
    "binance": BinanceDecoder,
    "huobi": HuobiDecoder,
}


def build_adapter(venue: VenueConfig, instrument: str, stats=None,
                  clock: Callable[[], float] = now_ms) -> VenueAdapter:
    decoder_cls = DECODERS.get(venue.kind)
    if decoder_cls is None:
        raise ConfigurationError(f"no decoder registered for venue kind '{venue.kind}'")

    kwargs = {"clock": clock, "stats": stats}
    if decoder_cls is BinanceDecoder:
        kwargs["explicit_subscribe"] = venue.explicit_subscribe

    return VenueAdapter(
        name=venue.name,
        url=venue.url,
        decoder=decoder_cls(venue.name, instrument, **kwargs),
    )


def build_adapters(config: ArbitrageConfig, stats=None,
                   clock: Callable[[], float] = now_ms) -> List[VenueAdapter]:
    """Startup-only: any failure here is a ConfigurationError and nothing has been started yet."""
    names = [v.name for v in config.venues]
    if len(set(names)) != len(names):
        raise ConfigurationError(f"duplicate venue names: {names}")
    return [build_adapter(v, config.instrument, stats=stats, clock=clock) for v in config.venues]
