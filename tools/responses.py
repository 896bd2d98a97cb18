def tool_response(*, tool, success, result=None, error=None, **extra):
    response = {
        "tool": tool,
        "success": success,
        "result": result,
        "error": error
    }
    response.update(extra)
    return response
