# CI build badge. The CI server posts a webhook after every build.
name = "Build Status"
description = "Latest CI build result for a repository."
inputs = {
    "repo": {"type": "string", "description": "owner/name of the repository", "required": True},
    "branch": {"type": "string", "description": "Branch to follow", "default": "main"},
}


def web_hook(payload):
    repo = payload.get("repository")
    if not repo:
        return ("missing repository", None, None)
    params = {"repo": repo, "branch": payload.get("branch", "main")}
    return (None, params, {"status": payload.get("status", "unknown"), "build": payload.get("build")})
