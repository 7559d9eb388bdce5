"""mirrorbot FastAPI service: GitHub and GitLab webhooks in, git and API actions out."""

from contextlib import asynccontextmanager

from dotenv import load_dotenv

# Load .env before logging reads BOT_ENVIRONMENT on import
load_dotenv()

from fastapi import FastAPI, Request

from connectors.github import GitHubWebhookVerifier
from connectors.gitlab import GitLabWebhookVerifier
from src.bot.context import BotContext, BotSettings
from src.gateway.dispatcher import Dispatcher
from src.gateway.routes import router as webhook_router
from src.gateway.tasks import TaskSupervisor
from src.utils.logging import get_logger, get_uvicorn_log_config

logger = get_logger(__name__)

# Seconds given to background handlers to finish on shutdown
SHUTDOWN_GRACE_SECONDS = 30.0


def init_app_state(app: FastAPI, ctx: BotContext) -> TaskSupervisor:
    """Attach the context, verifiers and dispatcher used by the webhook routes."""
    settings = ctx.settings
    supervisor = TaskSupervisor(settings.max_concurrent_tasks)

    app.state.ctx = ctx
    app.state.supervisor = supervisor
    app.state.dispatcher = Dispatcher(ctx, supervisor)
    app.state.github_verifier = GitHubWebhookVerifier(settings.github_webhook_secret)
    app.state.gitlab_verifier = GitLabWebhookVerifier(settings.gitlab_webhook_secret)
    return supervisor


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the bot context on startup, drain background work on shutdown."""
    logger.info("Starting mirrorbot...")

    settings = BotSettings.from_env()
    ctx = BotContext.from_settings(settings)
    await ctx.mirror.initialize()
    supervisor = init_app_state(app, ctx)

    logger.info(
        "mirrorbot startup complete",
        bot_name=settings.bot_name,
        mapped_repositories=len(ctx.mapper),
        mirror_path=str(settings.mirror_path),
    )

    yield

    logger.info("Shutting down mirrorbot...")
    await supervisor.drain(timeout=SHUTDOWN_GRACE_SECONDS)
    await ctx.aclose()
    logger.info("mirrorbot shutdown complete")


def create_app() -> FastAPI:
    app = FastAPI(
        title="mirrorbot",
        description="Mirrors GitHub pull requests to GitLab CI and reports CI results back",
        version="1.0.0",
        lifespan=lifespan,
    )

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint."""
        supervisor: TaskSupervisor | None = getattr(request.app.state, "supervisor", None)
        return {
            "status": "healthy",
            "background_tasks": supervisor.pending if supervisor else 0,
        }

    app.include_router(webhook_router)
    return app


app = create_app()


def main() -> None:
    """Run the mirrorbot service."""
    import uvicorn

    port = BotSettings.from_env().port
    uvicorn.run(
        "src.gateway.main:app",
        host="0.0.0.0",
        port=port,
        log_config=get_uvicorn_log_config(),
    )


if __name__ == "__main__":
    main()
