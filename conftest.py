import base64
import logging
import os
import platform
import sys
from importlib.metadata import version
from typing import AsyncGenerator, Dict, Optional, Union, List

import allure
import pytest
from browser_use import Agent, BrowserProfile, BrowserSession
from browser_use.utils import get_browser_use_version
from dotenv import load_dotenv
from playwright.sync_api import sync_playwright

from core.api_client import ApiClient
from core.constants import ResponseCode
from core.credential_store import CsvCredentialStore, UserCredentials, open_store
from core.data_generator import generate_user_account_data
from core.retry import RetryConfig, create_retry_decorator, get_correlation_id
from core.security import sanitize_for_allure
from core.settings import Settings, get_settings
from core.user_factory import acquire_user

from exceptions import (
    ShopCheckError,
    ConfigurationError,
    LLMProviderError,
    BrowserSessionError,
    ValidationError,
    create_error_context,
    log_error_with_context,
    configure_error_logging
)

# Load environment variables from .env file
load_dotenv()

configure_error_logging(level="INFO", format_type="json", enable_security=True)


LIVE_ENV_VAR = "RUN_LIVE_TESTS"


# --- Live test gating ---


def pytest_addoption(parser):
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests marked 'live' (real sites, a browser and an LLM API key are required)",
    )


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "live: talks to the real demo sites; skipped unless --run-live or RUN_LIVE_TESTS=1"
    )


def pytest_collection_modifyitems(config, items):
    run_live = config.getoption("--run-live") or os.getenv(LIVE_ENV_VAR, "").lower() in ("true", "1", "t")
    if run_live:
        return
    skip_live = pytest.mark.skip(reason=f"live test: pass --run-live or set {LIVE_ENV_VAR}=1")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


def pytest_terminal_summary(terminalreporter, exitstatus, config):
    # Report how much of the shared credential pool is left for the next run
    try:
        store = open_store()
        records = store.read_all()
    except ShopCheckError as e:
        terminalreporter.write_line(f"credential pool unreadable: {e.message}")
        return
    if records:
        available = sum(1 for record in records if record.is_available)
        terminalreporter.write_line(
            f"credential pool {store.path}: {available} available / {len(records)} total"
        )


# --- LLM factory ---


# provider -> (browser_use.llm class, api key env var, model env var, default model)
LLM_PROVIDERS = {
    "gemini": ("ChatGoogle", "GOOGLE_API_KEY", "GEMINI_MODEL", "gemini-2.5-pro"),
    "openai": ("ChatOpenAI", "OPENAI_API_KEY", "OPENAI_MODEL", "gpt-4o-mini"),
    "anthropic": ("ChatAnthropic", "ANTHROPIC_API_KEY", "ANTHROPIC_MODEL", "claude-3-5-sonnet-20241022"),
    "azure": ("ChatAzureOpenAI", "AZURE_API_KEY", "AZURE_MODEL", "gpt-4o-mini"),
    "groq": ("ChatGroq", "GROQ_API_KEY", "GROQ_MODEL", "llama-3.3-70b-versatile"),
}


def create_llm_instance(settings: Settings):
    # Build the chat model the browser agent runs on, from LLM_PROVIDER and its key
    provider = settings.llm_provider

    if provider not in LLM_PROVIDERS:
        raise ConfigurationError(
            message=f"Invalid LLM_PROVIDER: '{provider}'",
            config_key="LLM_PROVIDER",
            expected_format=f"One of: {', '.join(LLM_PROVIDERS)}",
            error_context=create_error_context(
                component="LLM Configuration",
                operation="provider_validation",
                provided_value=provider
            )
        )

    class_name, key_var, model_var, default_model = LLM_PROVIDERS[provider]

    try:
        from browser_use import llm as browser_use_llm
        chat_class = getattr(browser_use_llm, class_name)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(
            message=f"Failed to import {class_name} for {provider} provider",
            config_key=f"{provider.upper()}_DEPENDENCIES",
            expected_format=f"pip install browser_use[{provider}]",
            error_context=create_error_context(
                component="LLM Configuration",
                operation="import_validation",
                provider=provider
            ),
            cause=e
        ) from e

    api_key = os.getenv(key_var)
    if not api_key or api_key == "YOUR_API_KEY":
        raise ConfigurationError(
            message=f"{key_var} is not properly configured for {provider} provider",
            config_key=key_var,
            error_context=create_error_context(
                component="LLM Configuration",
                operation="api_key_validation",
                provider=provider
            )
        )

    kwargs = {"model": os.getenv(model_var, default_model), "api_key": api_key}
    if provider == "azure":
        endpoint = os.getenv("AZURE_ENDPOINT")
        if not endpoint:
            raise ConfigurationError(
                message="AZURE_ENDPOINT is required for Azure provider",
                config_key="AZURE_ENDPOINT",
                expected_format="https://your-resource.openai.azure.com/",
                error_context=create_error_context(
                    component="LLM Configuration",
                    operation="endpoint_validation",
                    provider=provider
                )
            )
        kwargs.update(
            azure_endpoint=endpoint,
            azure_deployment=os.getenv("AZURE_DEPLOYMENT"),
            api_version=os.getenv("AZURE_API_VERSION", "2024-10-21"),
        )

    try:
        return chat_class(**kwargs)
    except Exception as e:
        context = create_error_context(
            component="LLM Provider",
            operation="instance_creation",
            provider=provider
        )
        raise LLMProviderError(
            message=f"Failed to create {class_name} instance: {e}",
            provider=provider,
            error_context=context,
            cause=e
        ) from e


# --- Fixtures ---


@pytest.fixture(scope="session")
def settings() -> Settings:
    try:
        return get_settings()
    except ConfigurationError as e:
        raise pytest.UsageError(f"\n\n{e.get_actionable_message()}\n")


@pytest.fixture(scope="session")
def credential_store(settings: Settings) -> CsvCredentialStore:
    # Shared pool of reusable accounts, configured from CREDENTIAL_POOL_PATH
    return open_store(settings.credential_pool_path)


@pytest.fixture
def pool_user(credential_store: CsvCredentialStore) -> UserCredentials:
    # A recycled account when one is left, otherwise a freshly generated one
    user = acquire_user(credential_store)
    allure.attach(
        sanitize_for_allure({"name": user.name, "email": user.email, "password": user.password}),
        name="Test User",
        attachment_type=allure.attachment_type.TEXT,
    )
    return user


@pytest.fixture(scope="session")
def api_client(settings: Settings):
    with ApiClient(settings.automation_exercise_api_url, timeout=settings.api_timeout) as client:
        yield client


@pytest.fixture
def created_account(api_client: ApiClient) -> Dict[str, str]:
    # Account created through the API and deleted again after the test
    account = generate_user_account_data()
    body = api_client.create_account(account)
    if body.get("responseCode") != ResponseCode.CREATED:
        raise ValidationError(
            message=f"Could not create test account: {body.get('message')}",
            expected_value=int(ResponseCode.CREATED),
            actual_value=body.get("responseCode"),
            validation_type="account_setup"
        )
    yield account
    api_client.delete_account(account["email"], account["password"])


@pytest.fixture(scope="session")
def browser_version_info(browser_profile: BrowserProfile) -> Dict[str, str]:
    # Fixture to get Playwright and browser version info
    try:
        playwright_version = version("playwright")
        with sync_playwright() as p:
            browser = p.chromium.launch()
            browser_version = browser.version
            browser.close()
        return {
            "playwright_version": playwright_version,
            "browser_version": browser_version,
        }
    except Exception as e:
        logging.warning(f"Could not determine Playwright/browser version: {e}")
        return {
            "playwright_version": "N/A",
            "browser_version": "N/A",
        }


@pytest.fixture(scope="session", autouse=True)
def environment_reporter(request: pytest.FixtureRequest, settings: Settings):
    # Writes environment.properties for Allure when --alluredir is given
    allure_dir = request.config.getoption("--alluredir", default=None)
    if not allure_dir or not isinstance(allure_dir, str):
        return

    try:
        os.makedirs(allure_dir, exist_ok=True)
    except PermissionError:
        logging.error(f"Permission denied to create report directory: {allure_dir}")
        return

    browser_profile = request.getfixturevalue("browser_profile")
    browser_version_info = request.getfixturevalue("browser_version_info")

    env_props = {
        "operating_system": f"{platform.system()} {platform.release()}",
        "python_version": sys.version.split(" ")[0],
        "browser_use_version": get_browser_use_version(),
        "playwright_version": browser_version_info["playwright_version"],
        "browser_version": browser_version_info["browser_version"],
        "headless_mode": str(browser_profile.headless),
        "llm_provider": settings.llm_provider,
        "automation_exercise_url": settings.automation_exercise_url,
        "test_region": settings.test_region,
        "credential_pool": settings.credential_pool_path,
    }

    properties_file = os.path.join(allure_dir, "environment.properties")
    try:
        with open(properties_file, "w") as f:
            for key, value in env_props.items():
                f.write(f"{key}={value}\n")
    except IOError as e:
        logging.error(f"Failed to write environment properties file: {e}")


@pytest.fixture(scope="session")
def llm(settings: Settings):
    # Fails the session early with an actionable message on bad LLM configuration
    try:
        return create_llm_instance(settings)
    except (ConfigurationError, LLMProviderError) as e:
        correlation_id = log_error_with_context(e, e.error_context, level="error")
        raise pytest.UsageError(
            f"\n\nLLM Configuration Error [correlation_id: {correlation_id}]:\n{e.get_actionable_message()}\n\n"
            "Please check your environment configuration and try again.\n"
        )


@pytest.fixture(scope="session")
def browser_profile(settings: Settings) -> BrowserProfile:
    return BrowserProfile(headless=settings.headless)


@pytest.fixture(scope="function")
async def browser_session(
    browser_profile: BrowserProfile,
) -> AsyncGenerator[BrowserSession, None]:
    # Function-scoped fixture to manage the browser session's lifecycle
    session = None
    try:
        session = BrowserSession(browser_profile=browser_profile)
        yield session
    except Exception as e:
        context = create_error_context(
            component="Browser Session",
            operation="session_creation"
        )
        browser_error = BrowserSessionError(
            message=f"Failed to create browser session: {e}",
            browser_type="chromium",
            error_context=context,
            cause=e
        )
        log_error_with_context(browser_error, context)
        raise browser_error from e
    finally:
        if session:
            try:
                await session.close()
            except Exception as e:
                # Cleanup failures are logged; they must not fail the test
                context = create_error_context(
                    component="Browser Session",
                    operation="session_cleanup"
                )
                log_error_with_context(e, context, level="warning")


# --- Base Test Class for Agent-based Tests ---


def outcome_matches(result_text: str, expected_outcomes: List[str], ignore_case: bool = True) -> Optional[str]:
    # Returns the first expected outcome found in the agent's answer
    haystack = result_text.lower() if ignore_case else result_text
    for expected in expected_outcomes:
        needle = expected.lower() if ignore_case else expected
        if needle in haystack:
            return expected
    return None


class BaseAgentTest:
    # Base class for agent-driven browser tests

    BASE_URL = "https://automationexercise.com/"

    async def validate_task(
        self,
        llm,
        browser_session: BrowserSession,
        task_instruction: str,
        expected_outcomes: Optional[Union[str, List[str]]] = None,
        ignore_case: bool = True,
        sensitive_data: Optional[Dict[str, str]] = None,
    ) -> str:
        # Run the task from BASE_URL and require one of the expected outcomes in the answer.
        # sensitive_data values are passed to the agent by placeholder name only.
        full_task = f"Go to {self.BASE_URL}, then {task_instruction}"

        result_text = await run_agent_task(full_task, llm, browser_session, sensitive_data)

        if result_text is None:
            raise ValidationError(
                message="Agent did not return a final result",
                validation_type="result_presence",
                expected_value="non-null result",
                actual_value="null",
                error_context=create_error_context(
                    component="Agent Validation",
                    operation="result_validation"
                )
            )

        if not expected_outcomes:
            return result_text

        if isinstance(expected_outcomes, str):
            expected_outcomes = [expected_outcomes]

        matched = outcome_matches(result_text, expected_outcomes, ignore_case)
        if matched is None:
            raise ValidationError(
                message="Agent result does not contain any expected outcome",
                expected_value=expected_outcomes,
                actual_value=result_text,
                validation_type="outcome_match",
                error_context=create_error_context(
                    component="Agent Validation",
                    operation="outcome_match",
                    base_url=self.BASE_URL
                )
            )

        logging.info(f"Agent outcome '{matched}' found in result")
        return result_text


# --- Allure Hook for Step-by-Step Reporting ---


async def record_step(agent: Agent):
    # Hook function that captures and records agent activity at each step
    history = agent.state.history
    if not history:
        return

    last_action = history.model_actions()[-1] if history.model_actions() else {}
    action_name = next(iter(last_action)) if last_action else "No action"
    action_params = last_action.get(action_name, {})

    step_title = f"Action: {action_name}"
    if action_params:
        param_str = ", ".join(f"{k}={v}" for k, v in action_params.items())
        step_title += f"({param_str})"

    with allure.step(sanitize_for_allure(step_title)):
        thoughts = history.model_thoughts()
        if thoughts:
            allure.attach(
                sanitize_for_allure(str(thoughts[-1])),
                name="Agent Thoughts",
                attachment_type=allure.attachment_type.TEXT,
            )

        url = history.urls()[-1] if history.urls() else "N/A"
        allure.attach(
            url or "N/A",
            name="URL",
            attachment_type=allure.attachment_type.URI_LIST,
        )

        last_history_item = history.history[-1] if history.history else None
        if last_history_item and last_history_item.metadata:
            duration = last_history_item.metadata.duration_seconds
            allure.attach(
                f"{duration:.2f}s",
                name="Step Duration",
                attachment_type=allure.attachment_type.TEXT,
            )

        if agent.browser_session:
            try:
                screenshot_b64 = await agent.browser_session.take_screenshot()
                if screenshot_b64:
                    allure.attach(
                        base64.b64decode(screenshot_b64),
                        name="Screenshot after Action",
                        attachment_type=allure.attachment_type.PNG,
                    )
            except Exception as e:
                logging.warning(f"Failed to take or attach screenshot: {e}")


# --- Helper Function to Run Agent ---


async def _run_agent_task_impl(
    task_description: str,
    llm,
    browser_session: BrowserSession,
    sensitive_data: Optional[Dict[str, str]] = None,
) -> Optional[str]:
    correlation_id = get_correlation_id()
    provider_name = get_settings().llm_provider

    logging.info(f"Running task: {sanitize_for_allure(task_description)} [correlation_id: {correlation_id}]")

    retry_config = RetryConfig(max_attempts=get_settings().agent_max_attempts)

    @create_retry_decorator(retry_config, operation="browser agent run", correlation_id=correlation_id)
    async def execute_agent():
        agent = Agent(
            task=task_description,
            llm=llm,
            browser_session=browser_session,
            sensitive_data=sensitive_data,
        )
        try:
            result = await agent.run(on_step_end=record_step)
        except Exception as e:
            if "rate limit" in str(e).lower() or "timeout" in str(e).lower():
                raise LLMProviderError(
                    message=f"Agent execution failed: {e}",
                    provider=provider_name,
                    status_code=429 if "rate limit" in str(e).lower() else None,
                    error_context=create_error_context(
                        correlation_id=correlation_id,
                        component="Agent Execution",
                        operation="agent_run",
                        provider=provider_name
                    ),
                    cause=e
                ) from e
            raise

        if not result or not result.final_result():
            raise LLMProviderError(
                message="Agent returned empty or invalid result",
                provider=provider_name,
                error_context=create_error_context(
                    correlation_id=correlation_id,
                    component="Agent Execution",
                    operation="agent_result",
                    provider=provider_name
                )
            )
        return result

    try:
        result = await execute_agent()
    except LLMProviderError as e:
        log_error_with_context(e, e.error_context, level="error")
        allure.attach(
            sanitize_for_allure(f"{e.get_actionable_message()}\nCorrelation ID: {correlation_id}"),
            name="LLM API Error Details",
            attachment_type=allure.attachment_type.TEXT,
        )
        raise RuntimeError(f"LLM API error after retries: {e.message}") from e

    final_text = result.final_result()
    allure.attach(
        sanitize_for_allure(final_text),
        name="Agent Final Output",
        attachment_type=allure.attachment_type.TEXT,
    )
    allure.attach(
        correlation_id,
        name="Correlation ID",
        attachment_type=allure.attachment_type.TEXT,
    )

    logging.info(f"Task finished successfully [correlation_id: {correlation_id}]")
    return final_text


async def run_agent_task(
    task_description: str,
    llm,
    browser_session: BrowserSession,
    sensitive_data: Optional[Dict[str, str]] = None,
) -> Optional[str]:
    """
    Run a browser agent task inside an Allure step with a sanitized title.

    Real credential values go through ``sensitive_data`` and never appear in the
    task text, so they reach neither the LLM nor the report.
    """
    safe_task_description = sanitize_for_allure(task_description)

    with allure.step(f"Running browser agent with task: {safe_task_description}"):
        return await _run_agent_task_impl(task_description, llm, browser_session, sensitive_data)
