"""
Opportunity history and verification-mismatch files.

The history file is a JSON document ``{"history": [{timestamp,
opportunities}, ...]}`` holding the most recent scan entries, newest first.
Mismatches are appended one JSON object per line for offline analysis.
"""

import json
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .context import ScannerContext
from .types import ArbitrageOpportunity
from .utils import ensure_path_exists, get_logger, safe_json_dump, timestamp_to_iso

logger = get_logger(__name__)


def opportunity_to_dict(opportunity: ArbitrageOpportunity) -> Dict[str, Any]:
    """Serialize an opportunity with camelCase keys and Decimal strings."""
    return {
        "startToken": opportunity.start_token,
        "path": [
            {
                "poolAddress": step.pool_address,
                "tokenIn": step.token_in,
                "tokenOut": step.token_out,
                "tokenInSymbol": step.token_in_symbol,
                "tokenOutSymbol": step.token_out_symbol,
                "tokenInDecimals": step.token_in_decimals,
                "tokenOutDecimals": step.token_out_decimals,
            }
            for step in opportunity.path
        ],
        "testResults": [asdict(r) for r in opportunity.test_results],
        "bestAmount": opportunity.best_amount,
        "expectedProfit": opportunity.expected_profit,
        "profitPercent": opportunity.profit_percent,
        "estimatedGasCost": opportunity.estimated_gas_cost,
        "netProfit": opportunity.net_profit,
        "timestamp": opportunity.timestamp,
    }


class OpportunityHistory:
    """Writes scan results to the capped history file and the mismatch log."""

    def __init__(
        self,
        context: ScannerContext,
        history_path: Union[str, Path],
        max_entries: int = 20,
        per_entry_limit: int = 100,
        analysis_path: Optional[Union[str, Path]] = None,
    ):
        self.context = context
        self.history_path = Path(history_path)
        self.max_entries = max_entries
        self.per_entry_limit = per_entry_limit
        self.analysis_path = Path(analysis_path) if analysis_path else None

    @classmethod
    def from_config(cls, context: ScannerContext, config) -> "OpportunityHistory":
        output = config.output
        return cls(
            context,
            output.history_path,
            max_entries=output.max_history_entries,
            per_entry_limit=output.opportunities_per_entry,
            analysis_path=output.analysis_path if output.analysis_enabled else None,
        )

    def _read_history(self) -> List[Dict[str, Any]]:
        if not self.history_path.exists():
            return []
        try:
            data = json.loads(self.history_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Error reading opportunities file, starting fresh: {e}")
            return []

        if isinstance(data, dict) and isinstance(data.get("history"), list):
            return data["history"]
        # Legacy single-entry file
        if isinstance(data, dict) and "opportunities" in data:
            return [data]
        return []

    def save(self, opportunities: List[ArbitrageOpportunity]) -> int:
        """
        Prepend one entry for this scan and trim to the newest entries.

        Returns:
            Number of opportunities written (0 when nothing was passed)
        """
        if not opportunities:
            return 0

        kept = opportunities[: self.per_entry_limit]
        history = self._read_history()
        history.insert(
            0,
            {
                "timestamp": timestamp_to_iso(self.context.now()),
                "opportunities": [opportunity_to_dict(o) for o in kept],
            },
        )
        history.sort(key=lambda entry: entry.get("timestamp", ""), reverse=True)
        history = history[: self.max_entries]

        try:
            ensure_path_exists(self.history_path, is_file=True)
            self.history_path.write_text(
                safe_json_dump({"history": history}), encoding="utf-8"
            )
        except OSError as e:
            logger.error(f"Failed to write history file {self.history_path}: {e}")
            return 0
        logger.debug(f"Saved {len(kept)} opportunities to {self.history_path}")
        return len(kept)

    def latest_opportunities(self) -> Optional[List[Dict[str, Any]]]:
        """Opportunities of the newest history entry, or None."""
        history = self._read_history()
        if not history:
            return None
        return history[0].get("opportunities")

    def record_mismatch(self, record: Dict[str, Any]) -> None:
        """Append a local-vs-router disagreement to the analysis file."""
        if self.analysis_path is None:
            return
        try:
            ensure_path_exists(self.analysis_path, is_file=True)
            with open(self.analysis_path, "a", encoding="utf-8") as f:
                f.write(safe_json_dump(record, indent=None) + "\n")
        except OSError as e:
            logger.warning(f"Failed to append to {self.analysis_path}: {e}")
