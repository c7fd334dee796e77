from __future__ import annotations
import logging
from pathlib import Path
from typing import Any, Dict, Optional
from dotenv import load_dotenv

from .config_loader import ConfigError, load_config
from .core.context import ContextPolicy, ContextWindowManager
from .core.errors import InvalidInput
from .core.orchestrator import ChatOrchestrator
from .core.prompt import PromptAssembler, load_system_prompt
from .providers.registry import ProviderRegistry
from .secrets.sources import SecretsResolver
from .services.documents import DocumentProcessor
from .services.search import HttpSearchClient
from .storage.repository import InMemoryChatRepository, JsonlChatRepository

logger = logging.getLogger(__name__)


def _resolve(path_str: str, base: Path) -> Path:
    p = Path(path_str).expanduser()
    return p if p.is_absolute() else (base / p).resolve()


def build_search(cfg: Dict[str, Any], secrets: SecretsResolver) -> Optional[HttpSearchClient]:
    search_cfg = cfg.get("search") or {}
    if not search_cfg.get("url"):
        return None
    return HttpSearchClient(
        search_cfg["url"],
        token=search_cfg.get("token") or secrets.secret("search", "token"),
        timeout=float(search_cfg.get("timeout", 30.0)),
    )


def build_registry(cfg: Dict[str, Any], secrets: SecretsResolver,
                   search: Optional[HttpSearchClient] = None) -> ProviderRegistry:
    """One adapter per registered provider; `providers.<id>` tunes each one."""
    ProviderRegistry.ensure_imports()  # make sure built-ins register
    providers_cfg = cfg.get("providers") or {}
    adapters = {}
    for name in ProviderRegistry.registered():
        provider_cfg = providers_cfg.get(name) or {}
        if provider_cfg.get("enabled") is False:
            continue
        Adapter = ProviderRegistry.get(name)
        adapters[name] = Adapter.create(provider_cfg=provider_cfg, secrets=secrets, search=search)
    return ProviderRegistry(adapters)


def build_app(config_path: Path, repo_root: Optional[Path] = None) -> Dict[str, Any]:
    """
    Composition root: load YAML, build the provider registry, repository,
    document processor and prompt assembler.
    Returns: dict with cfg, paths, registry, repository, documents, assembler, search.
    """
    load_dotenv()
    config_path = Path(config_path)
    cfg = load_config(config_path)
    config_dir = config_path.resolve().parent
    repo_root = repo_root or Path(__file__).resolve().parents[2]

    # ----- Secrets -----
    secrets_cfg = cfg.get("secrets") or {}
    resolver = SecretsResolver(
        method=secrets_cfg.get("method", "env"),
        mapping=secrets_cfg.get("mapping", {}),
    )

    # ----- Providers -----
    search = build_search(cfg, resolver)
    registry = build_registry(cfg, resolver, search)
    provider_name = cfg["model"]["provider"]
    if provider_name not in registry:
        raise ConfigError(
            f"Unknown model.provider '{provider_name}' (expected one of {[p.id for p in registry.providers()]})."
        )

    # ----- Storage -----
    sessions_dir = _resolve(cfg["storage"]["sessions_dir"], repo_root)
    if cfg["storage"]["backend"] == "file":
        repository = JsonlChatRepository(sessions_dir)
    else:
        repository = InMemoryChatRepository()

    # ----- Documents -----
    documents_cfg = cfg.get("documents") or {}
    documents = None
    if documents_cfg.get("enabled", True):
        documents = DocumentProcessor.create(documents_cfg=documents_cfg, secrets=resolver)

    # ----- Prompt -----
    runtime = cfg.get("runtime") or {}
    prompt_file = runtime.get("system_prompt")
    system_prompt = load_system_prompt(_resolve(prompt_file, config_dir) if prompt_file else None)
    policy = ContextPolicy.from_config(cfg.get("context"))
    assembler = PromptAssembler(
        system_prompt=system_prompt,
        window=ContextWindowManager(policy) if policy else None,
    )

    return {
        "cfg": cfg,
        "paths": {"config_dir": config_dir, "repo_root": repo_root, "sessions_dir": sessions_dir},
        "registry": registry,
        "repository": repository,
        "documents": documents,
        "assembler": assembler,
        "search": search,
    }


def new_orchestrator(
    ctx: Dict[str, Any],
    *,
    session_id: Optional[str] = None,
    provider_id: Optional[str] = None,
) -> ChatOrchestrator:
    """A conversation wired to the shared registry/repository of `ctx`."""
    cfg = ctx["cfg"]
    runtime = cfg.get("runtime") or {}
    if provider_id is not None:
        provider_id = ctx["registry"].info(provider_id).id
    orchestrator = ChatOrchestrator(
        ctx["registry"],
        ctx["repository"],
        assembler=ctx["assembler"],
        documents=ctx["documents"],
        session_id=session_id,
        provider_id=provider_id or cfg["model"]["provider"],
        user_id=runtime.get("user_id"),
        stream=bool(runtime["stream"]),
    )
    model_name = cfg["model"].get("name")
    if model_name and provider_id is None:
        try:
            orchestrator.select_model(model_name)
        except InvalidInput as e:
            logger.warning("Ignoring model.name: %s", e)
    return orchestrator


async def shutdown(ctx: Dict[str, Any]) -> None:
    await ctx["registry"].aclose()
    if ctx.get("search") is not None:
        await ctx["search"].aclose()
    if ctx.get("documents") is not None:
        await ctx["documents"].aclose()
