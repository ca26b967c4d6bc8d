def session_guard(request):
    """Expose the guard decision of a protected page to its templates."""
    decision = getattr(request, "session_guard", None)
    if decision is None:
        return {}
    return {
        "session_guard": decision,
        "session_guard_ws": getattr(request, "session_guard_ws", ""),
    }
