# plugin_hub/cli.py
from __future__ import annotations
import argparse, asyncio, sys
from typing import List, Optional

from .logger import setup_logger
from .config import SUPPORTED_LANGUAGES, HubConfig, load_config
from .translator_base import BatchTranslator
from .translator_llm import ChatCompletionTranslator
from .translator_endpoint import EndpointTranslator
from .storage import KeyValueStore
from .cache import TranslationCache
from .session import HubSession, load_language, save_language
from .chat import Assistant, ChatClient
from .monitor import Monitor
from .errors import HubError

def configure_translator(cfg: HubConfig, logger) -> BatchTranslator:
    provider = cfg.translator.lower()
    if provider == "llm":
        return ChatCompletionTranslator(
            cfg.llm_api_key or "",
            model=cfg.llm_model,
            base_url=cfg.llm_base_url,
            timeout=cfg.request_timeout,
            logger=logger,
        )
    if provider == "endpoint":
        return EndpointTranslator(cfg.translate_url, timeout=cfg.request_timeout, logger=logger)
    raise RuntimeError(f"Unsupported translator {cfg.translator}")

def _print_repos(session: HubSession, repos) -> None:
    for repo in repos:
        desc = session.description_for(repo) or ""
        print(f"★{repo.stargazers_count:>7}  {repo.full_name or repo.name}")
        if desc:
            print(f"           {desc}")
        print(f"           {repo.html_url}")

async def run_search(cfg: HubConfig, category: Optional[str], query: str, sort: str, pages: int, lang: Optional[str]) -> int:
    logger = setup_logger(cfg.log_level)
    translator = configure_translator(cfg, logger)
    store = KeyValueStore(cfg.state_path)
    session = HubSession(cfg, translator, store, logger=logger)
    try:
        if lang:
            session.set_language(lang)
        logger.info(f"Language: {session.language}")
        repos = await session.show(category, query, sort)
        for _ in range(max(pages, 1) - 1):
            if not session.has_more:
                break
            await session.load_more()
        await session.wait_idle()
        _print_repos(session, session.repos)
        st = session.worker.status()
        logger.info(f"Translation queue: completed={st.completed} failed={st.failed} pending={st.pending}")
        if not repos:
            print("No plugins found. Try other keywords or categories.")
        return 0
    finally:
        await session.aclose()
        store.close()

def run_chat(cfg: HubConfig, message: str) -> int:
    logger = setup_logger(cfg.log_level)
    assistant = Assistant(ChatClient(cfg.chat_url, timeout=cfg.request_timeout, logger=logger), monitor=Monitor(logger), logger=logger)

    def echo(text: str) -> None:
        sys.stdout.write(text)
        sys.stdout.flush()

    reply = assistant.ask(message, on_text=echo)
    print()
    if reply.navigation is not None:
        print(f"→ {reply.navigation.to_url()}")
    return 0

def run_lang(cfg: HubConfig, lang: Optional[str]) -> int:
    store = KeyValueStore(cfg.state_path)
    try:
        if lang:
            save_language(store, lang)
        print(load_language(store, cfg.default_language))
        return 0
    finally:
        store.close()

def run_cache(cfg: HubConfig, clear: bool) -> int:
    logger = setup_logger(cfg.log_level)
    store = KeyValueStore(cfg.state_path)
    try:
        cache = TranslationCache(store, logger)
        cache.hydrate()
        if clear:
            cache.clear()
            logger.info("Translation cache cleared")
        print(f"{len(cache)} cached translation(s) in {cfg.state_path}")
        return 0
    finally:
        store.close()

def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(prog="plugin-hub", description="Browse AI plugins on GitHub with translated descriptions")
    ap.add_argument("--config", default=None, help="YAML config file")
    ap.add_argument("--state", dest="state_path", default=None, help="Path of the local state database")
    ap.add_argument("--log-level", default=None)
    sub = ap.add_subparsers(dest="cmd", required=True)

    s = sub.add_parser("search", help="List plugins for a category or query")
    s.add_argument("-q", "--query", default="")
    s.add_argument("--category", default=None, help="all|latest|functional|chat|model|image|entertainment|search")
    s.add_argument("--sort", default="stars", help="best|stars|updated")
    s.add_argument("--pages", type=int, default=1)
    s.add_argument("--lang", choices=SUPPORTED_LANGUAGES, default=None)
    s.add_argument("--translator", default=None, help="llm|endpoint")

    c = sub.add_parser("chat", help="Ask the plugin assistant")
    c.add_argument("message")

    l = sub.add_parser("lang", help="Show or set the preferred language")
    l.add_argument("lang", nargs="?", choices=SUPPORTED_LANGUAGES)

    k = sub.add_parser("cache", help="Inspect the translation cache")
    k.add_argument("--clear", action="store_true")

    args = ap.parse_args(argv)
    try:
        cfg = load_config(
            args.config,
            state_path=args.state_path,
            log_level=args.log_level,
            translator=getattr(args, "translator", None),
        )
        if args.cmd == "search":
            return asyncio.run(run_search(cfg, args.category, args.query, args.sort, args.pages, args.lang))
        if args.cmd == "chat":
            return run_chat(cfg, args.message)
        if args.cmd == "lang":
            return run_lang(cfg, args.lang)
        return run_cache(cfg, args.clear)
    except (HubError, RuntimeError, ValueError) as e:
        setup_logger().error(str(e))
        return 1

if __name__ == "__main__":
    sys.exit(main())
