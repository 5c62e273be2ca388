from pathlib import Path

import streamlit as st
from kin_engine import (
    KinshipError,
    NoResult,
    RelationStore,
    SpannedError,
    lex_query,
    parse_records,
    query,
    render_diagnostic,
)
from kin_settings import load_settings

st.set_page_config(page_title="Kin: Kinship Appellation Resolver", page_icon="👪", layout="wide")

settings = load_settings()

DEFAULT_REL = """# first > second = result
爸爸 > 哥哥 = 伯伯
妈妈 > 哥哥 = 舅舅"""

DEFAULT_QUERY = "爸爸的爸爸是什么"


def _default_relations() -> str:
    path = Path(settings.relations_path)
    return path.read_text(encoding="utf-8") if path.exists() else DEFAULT_REL


def _show_diagnostic(source: str, err: SpannedError):
    st.error(f"{type(err).__name__}: {err.message}")
    st.code("\n".join(render_diagnostic(source, err.span, err.message)), language="text")


if "relations" not in st.session_state:
    st.session_state.relations = _default_relations()
if "query" not in st.session_state:
    st.session_state.query = DEFAULT_QUERY

st.title("👪 Kin — Kinship Appellation Resolver")
st.write(
    "Ask `X的Y是什么` and the resolver looks up the exact pair (X, Y) in the built-in table "
    "merged with the relation definitions below. No chained inference is attempted."
)

col1, col2 = st.columns([1, 1], gap="large")

with col1:
    st.subheader("Relation definitions")
    st.text_area(
        "One `first > second = result` per line",
        height=300,
        help="Format: 爸爸 > 哥哥 = 伯伯\n`#` starts a comment that runs to the end of the line.",
        key="relations",
    )

with col2:
    st.subheader("Query")
    st.caption("Dockbar: click to insert tokens (appends to the end).")
    row1 = ["的", "是", "什么"]
    row2 = ["爸爸", "妈妈", "哥哥", "弟弟", "姐姐", "妹妹"]

    def insert(tok: str):
        st.session_state.query = (st.session_state.get("query") or "") + tok

    c = st.columns(len(row1))
    for i, t in enumerate(row1):
        if c[i].button(t, use_container_width=True): insert(t)
    c = st.columns(len(row2))
    for i, t in enumerate(row2):
        if c[i].button(t, use_container_width=True): insert(t)

    with st.expander("📚 Examples (click to expand/collapse)"):
        st.code("爸爸的爸爸是什么", language="text")
        st.code("妈妈的哥哥是什么", language="text")
        st.code("叔叔的妈妈是什么", language="text")
        st.code("哥哥的妈妈是妈妈  (needs definitions enabled)", language="text")

    st.text_input("Enter a query", key="query")
    allow_define = st.checkbox(
        "Allow definitions (`X的Y是Z` stores Z before answering)", value=settings.allow_define
    )

# Visualize the merged table
st.subheader("👀 Relation table")
store = RelationStore.seeded()
relations_ok = True
try:
    records = parse_records(st.session_state.relations)
    store.merge(records)
    st.markdown(f"_{len(records)} definitions parsed, {len(store)} relations in total_")
    st.table([{"first": f, "second": s, "result": r} for (f, s), r in store.items()])
except SpannedError as e:
    relations_ok = False
    _show_diagnostic(st.session_state.relations, e)

# Run
if st.button("▶️ Run", type="primary", disabled=not relations_ok):
    source = st.session_state.query
    try:
        appellation = query(source, store, allow_define=allow_define, strict=settings.strict)
        st.success("查询成功")
        tabs = st.tabs(["Result", "Tokens"])
        with tabs[0]:
            st.code(str(appellation), language="text")
        with tabs[1]:
            st.table([
                {"kind": tok.kind.name, "text": tok.text, "bytes": f"{tok.span.start}..{tok.span.end}"}
                for tok in lex_query(source, strict=settings.strict)
            ])
    except SpannedError as e:
        _show_diagnostic(source, e)
    except NoResult as e:
        st.warning(f"查询失败, info: {e}")
    except KinshipError as e:
        st.error(f"{type(e).__name__}: {e}")
else:
    st.info("Edit the definitions, build your query with the dockbar, then click **Run**.")
