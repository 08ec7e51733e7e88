"""
Screenshot extraction with an LLM vision model.

The model is asked for a JSON object describing the trade on the chart. Its
answers come in more than one shape (the prompt's example schema and an
older direction/entry/stop/targets/lots schema), so `normalize_extraction`
folds both into one `ExtractedTrade`.
"""

import json
import logging
import math
from typing import Any, Dict, List, Optional

from openai import OpenAI, OpenAIError

from schemas import ExtractedTrade
from settings import Settings, get_settings

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You will help traders journal their trades based on their trade screenshots that they give you. You will format the output in clean json. Use the following as an example output:

{
  "symbol": "XAUUSD",
  "timeframe": "H1",
  "position": "buy",
  "position_sizes": [0.05, 0.05, 0.05],
  "total_position_size": 0.15,
  "entry_prices": [3628.43, 3627.88, 3627.50],
  "stop_loss": null,
  "take_profit": null,
  "trade_direction": "bullish",
  "additional_notes": "Multiple entries at similar price levels, averaging position entry",
  "observation": "Price declined significantly before the buy entries, indicating potential reversal or support level worked"
}"""

USER_PROMPT = "Extract information from the image provided based on the system instructions and return ONLY JSON."

LONG_WORDS = {"long", "buy", "bullish"}
SHORT_WORDS = {"short", "sell", "bearish"}


def _number(value: Any) -> Optional[float]:
    """Coerce numbers and numeric strings; anything else (bools included) -> None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        n = float(value)
    elif isinstance(value, str):
        try:
            n = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return n if math.isfinite(n) else None


def _numbers(values: Any) -> List[float]:
    if not isinstance(values, list):
        return []
    return [n for n in (_number(v) for v in values) if n is not None]


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _direction(raw: Dict[str, Any]) -> Optional[str]:
    for key in ("direction", "trade_direction", "position"):
        value = raw.get(key)
        if value is None:
            continue
        if not isinstance(value, str):
            return None
        d = value.strip().lower()
        if d in LONG_WORDS:
            return "long"
        if d in SHORT_WORDS:
            return "short"
        return None
    return None


def normalize_extraction(raw: Dict[str, Any]) -> ExtractedTrade:
    """Reconcile a raw model answer into the canonical trade fields."""
    symbol = raw.get("symbol")
    timeframe = raw.get("timeframe")

    # Entry: `entry`, else the first of `entry_prices`
    entry = _number(raw.get("entry")) if isinstance(raw.get("entry"), (int, float)) else None
    entry_list = _numbers(raw.get("entry_prices"))
    if entry is None and entry_list:
        entry = entry_list[0]

    # Stop: `stop` or `stop_loss`
    stop = _number(raw.get("stop")) if isinstance(raw.get("stop"), (int, float)) else None
    if stop is None:
        stop = _number(raw.get("stop_loss"))

    # Targets: `targets` list, else `take_profit` list or scalar
    if isinstance(raw.get("targets"), list):
        targets = _numbers(raw["targets"])
    elif isinstance(raw.get("take_profit"), list):
        targets = _numbers(raw["take_profit"])
    else:
        tp = _number(raw.get("take_profit"))
        targets = [tp] if tp is not None else []

    # Lots: `lots`, else `total_position_size`, else the sum of `position_sizes`
    lots = _number(raw.get("lots")) if isinstance(raw.get("lots"), (int, float)) else None
    if lots is None:
        lots = _number(raw.get("total_position_size"))
    position_sizes = _numbers(raw.get("position_sizes"))
    if lots is None and position_sizes:
        lots = sum(position_sizes)

    return ExtractedTrade(
        symbol=symbol.strip() if isinstance(symbol, str) and symbol.strip() else None,
        direction=_direction(raw),
        entry=entry,
        entry_list=entry_list,
        stop=stop,
        targets=targets,
        lots=lots,
        timeframe=timeframe.strip() if isinstance(timeframe, str) and timeframe.strip() else None,
        additional_notes=_text(raw.get("additional_notes")),
        observation=_text(raw.get("observation")),
        position_sizes=position_sizes,
    )


def _response_text(resp: Any) -> str:
    text = getattr(resp, "output_text", None)
    if text:
        return text
    try:
        return resp.output[0].content[0].text or "{}"
    except (AttributeError, IndexError, TypeError):
        return "{}"


def extract_trade_from_image(image_url: str, settings: Optional[Settings] = None, client: Optional[OpenAI] = None) -> Optional[ExtractedTrade]:
    """
    Ask the vision model to read a trade screenshot.

    Returns None when extraction is not configured or fails; the journal form
    then simply starts empty.
    """
    settings = settings or get_settings()
    if client is None:
        if not settings.openai_api_key:
            logger.warning("OPENAI_API_KEY missing; skipping extraction")
            return None
        client = OpenAI(api_key=settings.openai_api_key)

    try:
        resp = client.responses.create(
            model=settings.openai_model,
            input=[
                {
                    "role": "system",
                    "content": [{"type": "input_text", "text": SYSTEM_PROMPT}],
                },
                {
                    "role": "user",
                    "content": [
                        {"type": "input_text", "text": USER_PROMPT},
                        {"type": "input_image", "image_url": image_url, "detail": "auto"},
                    ],
                },
            ],
            text={"format": {"type": "json_object"}},
        )
        raw = json.loads(_response_text(resp))
    except (OpenAIError, ValueError) as e:
        logger.error("Vision extraction failed: %s", e)
        return None

    if not isinstance(raw, dict):
        logger.error("Vision extraction returned %s instead of an object", type(raw).__name__)
        return None
    return normalize_extraction(raw)
