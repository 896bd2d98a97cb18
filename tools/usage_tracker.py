from app.config import MAX_CONTEXT_TOKENS, get_budget_state


def track_cost(usage):
    if usage is None:
        prompt_tokens = completion_tokens = total_tokens = 0
    elif isinstance(usage, dict):
        prompt_tokens = usage.get("prompt_tokens", 0)
        completion_tokens = usage.get("completion_tokens", 0)
        total_tokens = usage.get("total_tokens", 0)
    else:
        prompt_tokens = getattr(usage, "prompt_tokens", 0) or 0
        completion_tokens = getattr(usage, "completion_tokens", 0) or 0
        total_tokens = getattr(usage, "total_tokens", 0) or 0

    token_utilization_ratio = total_tokens / MAX_CONTEXT_TOKENS if MAX_CONTEXT_TOKENS > 0 else 0.0

    return {
        "prompt_tokens": prompt_tokens,
        "completion_tokens": completion_tokens,
        "total_tokens": total_tokens,
        "token_utilization_ratio": token_utilization_ratio,
        "budget_state": get_budget_state(total_tokens)
    }


def aggregate_costs(*cost_dicts):
    prompt_tokens = sum(c["prompt_tokens"] for c in cost_dicts)
    completion_tokens = sum(c["completion_tokens"] for c in cost_dicts)
    total_tokens = sum(c["total_tokens"] for c in cost_dicts)

    token_utilization_ratio = (
        total_tokens / MAX_CONTEXT_TOKENS
        if MAX_CONTEXT_TOKENS > 0
        else 0.0
    )

    return {
        "calls": len(cost_dicts),
        "prompt_tokens": prompt_tokens,
        "completion_tokens": completion_tokens,
        "total_tokens": total_tokens,
        "token_utilization_ratio": token_utilization_ratio,
        "budget_state": get_budget_state(total_tokens)
    }
