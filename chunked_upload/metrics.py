from prometheus_client import Counter, Gauge, Histogram, generate_latest

parts_uploaded_total = Counter("upload_parts_uploaded_total", "Total upload session parts accepted by the server")
bytes_uploaded_total = Counter("upload_bytes_uploaded_total", "Total payload bytes accepted by the server")
part_upload_failures_total = Counter("upload_part_failures_total", "Total parts that failed after retries")
part_retries_total = Counter("upload_part_retries_total", "Total retry attempts for part uploads")
commit_retries_total = Counter("upload_commit_retries_total", "Total commit re-issues after a 202 response")
sessions_aborted_total = Counter("upload_sessions_aborted_total", "Total upload sessions aborted by the client")

inflight_parts = Gauge("upload_inflight_parts", "Current in-flight part uploads")

http_request_duration_seconds = Histogram(
    "upload_http_request_duration_seconds",
    "Upload API request latency in seconds",
    ["method", "operation", "status_code"],
)


def metrics_text() -> str:
    return generate_latest().decode("utf-8")
