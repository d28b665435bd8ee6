from filterproxy.clients.upstream import build_client, fetch_metrics, is_success_status

__all__ = ["build_client", "fetch_metrics", "is_success_status"]
