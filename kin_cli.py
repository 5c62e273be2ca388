"""
Command line entry point: resolve one kinship query and print the answer.
"""

import logging
from pathlib import Path
from typing import Annotated, Optional

import cyclopts
from cyclopts import App
from rich.console import Console
from rich.text import Text

import kin_engine
from kin_engine import NoResult, RecordError, RelationFileError, SpannedError
from kin_settings import load_settings

app = App(name="kin", help="Resolve compound kinship appellations such as 爸爸的爸爸是什么.")
console = Console(highlight=False, soft_wrap=True)
err_console = Console(stderr=True, highlight=False, soft_wrap=True)

USAGE_HINT = "请输入要查询的称呼,例如：`爸爸的爸爸是什么`"
SUCCESS_BANNER = "查询成功"


def print_diagnostic(source: str, err: SpannedError, out: Console = err_console) -> None:
    code, carets, message = kin_engine.render_diagnostic(source, err.span, err.message)
    out.print(Text(code))
    out.print(Text(carets, style="bold red"))
    out.print(Text(message, style="red"))


@app.default
def resolve_appellation(
    query: Annotated[
        Optional[str], cyclopts.Parameter(help="Query text, e.g. 爸爸的爸爸是什么")
    ] = None,
    *,
    define: Annotated[
        bool, cyclopts.Parameter(help="Allow `X的Y是Z` to define a relation before looking it up")
    ] = False,
    relations: Annotated[
        Optional[str], cyclopts.Parameter(help="Relation file to merge over the built-in table")
    ] = None,
    verbose: Annotated[bool, cyclopts.Parameter(help="Enable verbose logging")] = False,
) -> int:
    """Resolve QUERY against the built-in relations plus the relation file."""
    settings = load_settings()
    logging.basicConfig(
        level=logging.DEBUG if verbose else settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger = logging.getLogger("kin")

    if not query:
        console.print(USAGE_HINT)
        return 0

    relations_path = Path(relations) if relations else settings.relations_path
    try:
        store = kin_engine.build_store(relations_path, required=settings.require_relations)
    except RelationFileError as e:
        err_console.print(Text(f"启动失败: {e}", style="bold red"))
        return 1
    except RecordError as e:
        source = relations_path.read_text(encoding="utf-8")
        line, column = kin_engine.line_col(source, e.span)
        err_console.print(Text(f"启动失败: {relations_path}:{line}:{column}: {e.message}", style="bold red"))
        print_diagnostic(source, e)
        return 1
    logger.debug("relation store ready with %d entries", len(store))

    try:
        appellation = kin_engine.query(
            query, store, allow_define=define or settings.allow_define, strict=settings.strict
        )
    except SpannedError as e:
        print_diagnostic(query, e)
        return 0
    except NoResult as e:
        err_console.print(f"查询失败, info: {e}")
        return 0

    console.print(SUCCESS_BANNER)
    console.print(str(appellation))
    return 0


def main(argv=None):
    app(argv)


if __name__ == "__main__":
    main()
