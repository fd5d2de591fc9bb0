"""
API endpoint constants and configuration.

This module contains the endpoint paths of the detection compute service and
the history (persistence) service. Both are relative to their configured base
URLs.
"""


class ComputeAPIEndpoints:
    """Detection/quantitative compute service endpoint paths."""

    API_BASE = "/api/v1"

    ANALYSIS = f"{API_BASE}/analysis/{{analysis_id}}"
    QUANTITATIVE = f"{API_BASE}/analysis/{{analysis_id}}/quantitative"

    @classmethod
    def get_analysis(cls, analysis_id: str) -> str:
        return cls.ANALYSIS.format(analysis_id=analysis_id)

    @classmethod
    def get_quantitative(cls, analysis_id: str) -> str:
        return cls.QUANTITATIVE.format(analysis_id=analysis_id)


class HistoryAPIEndpoints:
    """History service endpoint paths (proxy + stored analysis records)."""

    PROXY_ANALYSIS = "/python/analysis/{analysis_id}"
    RECORD = "/history/{analysis_id}"
    QUANTITATIVE = "/history/{analysis_id}/quantitative"

    @classmethod
    def get_proxy_analysis(cls, analysis_id: str) -> str:
        return cls.PROXY_ANALYSIS.format(analysis_id=analysis_id)

    @classmethod
    def get_record(cls, analysis_id: str) -> str:
        """
        Stored analysis record endpoint.

        Args:
            analysis_id: Analysis ID

        Returns:
            Formatted endpoint path
        """
        return cls.RECORD.format(analysis_id=analysis_id)

    @classmethod
    def get_quantitative(cls, analysis_id: str) -> str:
        return cls.QUANTITATIVE.format(analysis_id=analysis_id)


class BaselineSource:
    """Names of the baseline fetch sources, in fallback order."""

    COMPUTE = "compute"
    PROXY = "proxy"
    HISTORY = "history"


class APIConstants:
    """General API configuration constants."""

    CONTENT_TYPE_JSON = "application/json"

    # Query flag asking the history service to embed tile imagery
    INCLUDE_TILE_IMAGES = "includeTileImages"
