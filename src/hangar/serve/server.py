"""Deployment server implementation.

Provides the FastAPI application factory for the intake endpoint, the
status/agent/service lookups and the OAuth sign-in flow.
"""

from __future__ import annotations

import asyncio
import secrets
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import ValidationError
from starlette.datastructures import UploadFile
from starlette.middleware.sessions import SessionMiddleware

from hangar import __version__
from hangar.auth.oauth import (
    TokenStore,
    TwitterOAuth,
    credentials_env,
    refresh_token_if_needed,
)
from hangar.config.defaults import MAX_UPLOAD_BYTES
from hangar.deploy.pipeline import AcceptedSubmission, DeploymentPipeline, Submission
from hangar.lib.errors import (
    ConfigError,
    DeploymentError,
    DuplicateRequestError,
    OAuthError,
    UploadValidationError,
)
from hangar.lib.logging_config import get_logger
from hangar.models.deployment import (
    AgentRecord,
    ServiceDescriptor,
    StatusRecord,
    UploadedFile,
)
from hangar.serve.middleware import ErrorHandlingMiddleware, LoggingMiddleware
from hangar.serve.models import (
    HealthResponse,
    IntakeResponse,
    ProfileResponse,
    ServerState,
)

if TYPE_CHECKING:
    from hangar.config.settings import Settings
    from hangar.models.user import UserToken

logger = get_logger(__name__)

SESSION_USER_KEY = "twitter_id"
SESSION_STATE_KEY = "oauth_state"
SESSION_VERIFIER_KEY = "oauth_code_verifier"


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


async def read_submission(request: Request) -> Submission:
    """Turn a multipart intake request into a submission.

    Raises:
        UploadValidationError: If a file exceeds the size limit or has an
            unusable name
    """
    form = await request.form()
    project_name = ""
    version = ""
    files: list[UploadedFile] = []
    for key, value in form.multi_items():
        if isinstance(value, UploadFile):
            data = await value.read()
            if len(data) > MAX_UPLOAD_BYTES:
                raise UploadValidationError(
                    f"File too large: {value.filename}", filename=value.filename
                )
            try:
                files.append(
                    UploadedFile(
                        field_name=key,
                        filename=value.filename or key,
                        content_type=value.content_type or "",
                        data=data,
                    )
                )
            except ValidationError as exc:
                raise UploadValidationError(
                    f"Invalid file name: {value.filename!r}", filename=value.filename
                ) from exc
        elif key == "projectName":
            project_name = value
        elif key == "version":
            version = value
    return Submission(project_name=project_name, version=version, files=files)


class DeploymentServer:
    """HTTP server accepting agent bundles and reporting deployment progress.

    Attributes:
        settings: Application settings.
        pipeline: The deployment pipeline runs are handed to.
        tokens: Store of OAuth user tokens.
        state: The current server state.
    """

    def __init__(
        self,
        settings: Settings,
        pipeline: DeploymentPipeline | None = None,
        oauth: TwitterOAuth | None = None,
        token_store: TokenStore | None = None,
        debug: bool = False,
    ) -> None:
        """Initialize the deployment server.

        Args:
            settings: Application settings.
            pipeline: Deployment pipeline (default: built from settings).
            oauth: OAuth client (default: built from settings on first use).
            token_store: Token store (default: users file under data_dir).
            debug: Include exception details in 500 responses.
        """
        self.settings = settings
        self.pipeline = pipeline or DeploymentPipeline(settings)
        self.tokens = token_store or TokenStore(settings.users_path)
        self.debug = debug
        self._oauth = oauth

        if settings.host == "0.0.0.0":  # noqa: S104
            logger.warning(
                "Server binding to 0.0.0.0 exposes it to all network interfaces. "
                "Use 127.0.0.1 for local-only access."
            )
        if settings.uses_default_session_secret:
            logger.warning(
                "Session cookies are signed with the default secret. "
                "Set HANGAR_SESSION_SECRET before exposing the server."
            )

        self.state = ServerState.INITIALIZING
        self.active_runs = 0
        self._app: FastAPI | None = None
        self._start_time: datetime | None = None

    @property
    def oauth(self) -> TwitterOAuth:
        """OAuth client, built from settings on first use."""
        if self._oauth is None:
            self._oauth = TwitterOAuth.from_settings(self.settings)
        return self._oauth

    @property
    def is_ready(self) -> bool:
        """Check if the server is ready to accept requests."""
        return self.state in (ServerState.READY, ServerState.RUNNING)

    @property
    def uptime_seconds(self) -> float:
        """Return server uptime in seconds."""
        if self._start_time is None:
            return 0.0
        delta = datetime.now(timezone.utc) - self._start_time
        return delta.total_seconds()

    @asynccontextmanager
    async def lifespan(self, app: FastAPI) -> AsyncGenerator[None, None]:
        """Sweep leftover staging directories, then serve until shutdown."""
        await asyncio.to_thread(self.pipeline.stager.sweep)
        self._start_time = datetime.now(timezone.utc)
        self.state = ServerState.RUNNING
        logger.info(
            f"Deployment server started at http://{self.settings.host}:"
            f"{self.settings.port}"
        )
        try:
            yield
        finally:
            self.state = ServerState.SHUTTING_DOWN
            logger.info(f"Deployment server stopping with {self.active_runs} run(s)")
            self.state = ServerState.STOPPED

    def create_app(self) -> FastAPI:
        """Create and configure the FastAPI application.

        Returns:
            Configured FastAPI application instance.
        """
        app = FastAPI(
            title="Hangar",
            description="Build and deploy agent bundles as hosted services",
            version=__version__,
            lifespan=self.lifespan,
        )

        app.add_middleware(
            CORSMiddleware,
            allow_origins=self.settings.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
        app.add_middleware(
            SessionMiddleware,
            secret_key=self.settings.session_secret.get_secret_value(),
        )
        # Starlette runs middleware in reverse order of addition
        app.add_middleware(ErrorHandlingMiddleware, debug=self.debug)
        app.add_middleware(LoggingMiddleware, debug=self.debug)

        self._register_exception_handlers(app)
        self._register_health_endpoints(app)
        self._register_deployment_endpoints(app)
        self._register_auth_endpoints(app)

        self._app = app
        self.state = ServerState.READY
        logger.info("FastAPI app created for deployment server")
        return app

    def _register_exception_handlers(self, app: FastAPI) -> None:
        @app.exception_handler(UploadValidationError)
        async def upload_error(
            request: Request, exc: UploadValidationError
        ) -> JSONResponse:
            return _error(400, exc.message)

        @app.exception_handler(DuplicateRequestError)
        async def duplicate_error(
            request: Request, exc: DuplicateRequestError
        ) -> JSONResponse:
            return _error(400, str(exc))

        @app.exception_handler(ConfigError)
        async def config_error(request: Request, exc: ConfigError) -> JSONResponse:
            logger.error(str(exc))
            return _error(503, exc.message)

        @app.exception_handler(DeploymentError)
        async def deployment_error(
            request: Request, exc: DeploymentError
        ) -> JSONResponse:
            logger.error(str(exc))
            return _error(502, exc.message)

        @app.exception_handler(OAuthError)
        async def oauth_error(request: Request, exc: OAuthError) -> JSONResponse:
            logger.error(f"OAuth failure: {exc.message}")
            return _error(500, "Authentication failed")

    def _register_health_endpoints(self, app: FastAPI) -> None:
        @app.get("/health", response_model=HealthResponse, tags=["Health"])
        async def health() -> HealthResponse:
            """Basic health check endpoint."""
            return HealthResponse(
                status="healthy" if self.is_ready else "unhealthy",
                version=__version__,
                uptime_seconds=self.uptime_seconds,
                active_runs=self.active_runs,
            )

        @app.get("/ready", tags=["Health"])
        async def ready() -> dict[str, bool]:
            """Readiness check endpoint for orchestrators."""
            return {"ready": self.is_ready}

    async def _run(self, accepted: AcceptedSubmission) -> None:
        self.active_runs += 1
        try:
            await self.pipeline.execute(accepted)
        finally:
            self.active_runs -= 1

    async def _session_env(self, request: Request) -> dict[str, str]:
        twitter_id = request.session.get(SESSION_USER_KEY)
        if not twitter_id:
            return {}
        user = self.tokens.get(twitter_id)
        if user is None:
            return {}
        user = await self._current_user_token(user)
        return credentials_env(user, self.settings)

    async def _current_user_token(self, user: UserToken) -> UserToken:
        try:
            oauth = self.oauth
        except ConfigError:
            return user
        return await refresh_token_if_needed(user, oauth, self.tokens)

    def _register_deployment_endpoints(self, app: FastAPI) -> None:
        @app.post("/create/agent", response_model=IntakeResponse, tags=["Deploy"])
        async def create_agent(
            request: Request, background_tasks: BackgroundTasks
        ) -> IntakeResponse:
            """Accept an agent bundle and schedule its deployment."""
            submission = await read_submission(request)
            submission.extra_env = await self._session_env(request)
            accepted = await self.pipeline.accept(submission)
            background_tasks.add_task(self._run, accepted)
            return IntakeResponse(
                agent_id=accepted.request.agent_id,
                request_id=accepted.request.request_id,
                warnings=accepted.warnings,
            )

        @app.get(
            "/deployments/{request_id}",
            response_model=StatusRecord,
            tags=["Deploy"],
        )
        async def get_deployment(request_id: str) -> StatusRecord | JSONResponse:
            """Return the status record of a request."""
            record = self.pipeline.recorder.get_status(request_id)
            if record is None:
                return _error(404, f"No deployment found for request {request_id}")
            return record

        @app.get("/agents/{agent_id}", tags=["Deploy"])
        async def get_agent(agent_id: str) -> JSONResponse:
            """Return the agent record of a project."""
            record: AgentRecord | None = self.pipeline.recorder.get_agent(agent_id)
            if record is None:
                return _error(404, f"No agent found for id {agent_id}")
            return JSONResponse(content=record.model_dump(mode="json", by_alias=True))

        @app.get(
            "/services/{project_name}",
            response_model=ServiceDescriptor,
            tags=["Deploy"],
        )
        async def get_service(project_name: str) -> ServiceDescriptor | JSONResponse:
            """Return the live hosted service for a project."""
            descriptor = await asyncio.to_thread(
                self.pipeline.deployer.resolve, project_name
            )
            if descriptor is None:
                return _error(404, f"No service found for project {project_name}")
            return descriptor

    def _register_auth_endpoints(self, app: FastAPI) -> None:
        @app.get("/auth/twitter", tags=["Auth"])
        async def auth_twitter(request: Request) -> RedirectResponse:
            """Start the OAuth flow with fresh state and PKCE values."""
            authorization = self.oauth.generate_authorization_url()
            request.session[SESSION_STATE_KEY] = authorization.state
            request.session[SESSION_VERIFIER_KEY] = authorization.code_verifier
            return RedirectResponse(authorization.url, status_code=302)

        @app.get("/callback", tags=["Auth"], response_model=None)
        async def callback(
            request: Request, state: str = "", code: str = ""
        ) -> RedirectResponse | JSONResponse:
            """Complete the OAuth flow and sign the user in."""
            session_state = request.session.pop(SESSION_STATE_KEY, None)
            code_verifier = request.session.pop(SESSION_VERIFIER_KEY, None)
            if (
                not state
                or not code
                or not session_state
                or not code_verifier
                or not secrets.compare_digest(state, session_state)
            ):
                return _error(400, "Invalid state parameter")

            grant = await self.oauth.exchange_code(code, code_verifier)
            me = await self.oauth.get_me(grant.access_token)
            self.tokens.upsert(me["id"], me["username"], grant)
            request.session[SESSION_USER_KEY] = me["id"]
            logger.info(f"User {me['username']} signed in")
            return RedirectResponse("/profile", status_code=302)

        @app.get("/profile", tags=["Auth"], response_model=None)
        async def profile(request: Request) -> ProfileResponse | JSONResponse:
            """Return the signed-in user's profile with a current token."""
            twitter_id = request.session.get(SESSION_USER_KEY)
            if not twitter_id:
                return _error(401, "Not signed in")
            user = self.tokens.get(twitter_id)
            if user is None:
                return _error(404, "User not found")

            user = await self._current_user_token(user)
            return ProfileResponse(
                twitter_id=user.twitter_id,
                twitter_username=user.twitter_username,
                access_token=user.access_token,
                env=credentials_env(user, self.settings),
            )


def create_app(
    settings: Settings,
    pipeline: DeploymentPipeline | None = None,
    **kwargs: object,
) -> FastAPI:
    """Build the FastAPI application for the given settings."""
    server = DeploymentServer(settings, pipeline=pipeline, **kwargs)  # type: ignore[arg-type]
    return server.create_app()
