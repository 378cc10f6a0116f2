def redact_user_id(user_id: str | None) -> str:
    """Shorten a user id (a UUID in the My10 database) to its first block for log lines."""
    if not user_id:
        return "anonymous"
    head = user_id.split("-", 1)[0][:8]
    return head if head == user_id else f"{head}***"
