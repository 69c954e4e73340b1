"""
Text and JSON views of repository results, shared by the CLI and the web API.
"""
from tlecache.policy import SchedulingDecision
from tlecache.repository import RepositoryResult


class TLEPresenter:
    """Formats TLE results for terminal output or JSON responses."""

    NAME_WIDTH = 24

    @staticmethod
    def format_table(query_key: str, result: RepositoryResult) -> str:
        lines = []
        lines.append(f"\n{query_key}: {len(result.tles)} TLEs "
                     f"({result.source.value}, fetched {result.fetched_at.isoformat()})")
        if result.fallback_error is not None:
            lines.append(f"Showing cached data; refresh failed: {result.fallback_error}")
        lines.append(f"{'NORAD':>6} {'Name':<{TLEPresenter.NAME_WIDTH}}")
        lines.append("-" * (7 + TLEPresenter.NAME_WIDTH))

        for tle in result.tles:
            norad = tle.norad_id if tle.norad_id is not None else '--'
            name = tle.name or '(unnamed)'
            lines.append(f"{norad:>6} {name:<{TLEPresenter.NAME_WIDTH}}")
        return '\n'.join(lines)

    @staticmethod
    def to_dict(query_key: str, result: RepositoryResult) -> dict:
        return {
            'query': query_key,
            'source': result.source.value,
            'fetched_at': result.fetched_at.isoformat(),
            'fallback_error': str(result.fallback_error) if result.fallback_error else None,
            'tles': [
                {
                    'name': tle.name,
                    'norad_id': tle.norad_id,
                    'line1': tle.line1,
                    'line2': tle.line2,
                }
                for tle in result.tles
            ],
        }

    @staticmethod
    def decision_to_dict(decision: SchedulingDecision) -> dict:
        earliest = decision.earliest_time
        return {
            'should_schedule': decision.should_schedule,
            'earliest_time': earliest.isoformat() if earliest else None,
        }
