from typing import List, NamedTuple

# Substrings that hint at SQL injection, XSS, traversal or admin-panel probing
SUSPICIOUS_PATH_PATTERNS = (
    "select ",
    "union ",
    " or 1=1",
    "../",
    "<script",
    " onerror=",
    " drop ",
    "insert into",
    "xp_cmdshell",
    "admin",
    "config.php",
    "wp-admin",
)

HIGH_RISK_COUNTRIES = ("CN", "RU", "KP", "IR", "SY", "PK")

HIGH_IMPACT_METHODS = ("PUT", "DELETE", "PATCH")

BOT_AGENT_MARKERS = ("curl", "bot", "scanner")


class AnomalyScore(NamedTuple):
    score: int
    reasons: List[str]


def _country_of(geo):
    if geo is None:
        return ""
    if isinstance(geo, dict):
        return geo.get("country") or ""
    return getattr(geo, "country", None) or ""


def score_request(method, path, status, geo, is_spike, user_agent,
                  high_risk_countries=HIGH_RISK_COUNTRIES):
    """
    Heuristic risk score (0-100) for a single HTTP request.
    Every rule adds its points independently; reasons come back in rule order.
    """
    score = 0
    reasons = []

    if is_spike:
        score += 40
        reasons.append("High request rate (spike)")

    status = status or 0
    if status >= 500:
        score += 30
        reasons.append("5xx server error")
    elif status >= 400:
        score += 20
        reasons.append("4xx client error")

    method = (method or "").upper()
    if method in HIGH_IMPACT_METHODS:
        score += 10
        reasons.append(f"High-impact HTTP method: {method}")
    elif method == "POST":
        score += 5
        reasons.append("Write operation (POST)")

    lower_path = (path or "").lower()
    if any(pattern in lower_path for pattern in SUSPICIOUS_PATH_PATTERNS):
        score += 15
        reasons.append("Suspicious pattern in path (possible injection/XSS)")

    country = _country_of(geo)
    if country and country in high_risk_countries:
        score += 10
        reasons.append(f"High-risk geo region: {country}")

    ua = (user_agent or "").lower()
    if not ua or any(marker in ua for marker in BOT_AGENT_MARKERS):
        score += 10
        reasons.append("Non-browser / bot-like user agent")

    return AnomalyScore(min(100, max(0, score)), reasons)
