from __future__ import annotations
import sys
from pathlib import Path as _Path

_ROOT = _Path(__file__).resolve().parents[1]
_SRC = _ROOT / "src"
if str(_SRC) not in sys.path:
    sys.path.insert(0, str(_SRC))

import traceback
from dataclasses import asdict

import streamlit as st

from warehouse_export.catalog.store import CatalogStore
from warehouse_export.config.settings import load_settings
from warehouse_export.exceptions.errors import WarehouseExportError
from warehouse_export.export.orchestrator import ExportStatus
from warehouse_export.export.service import build_orchestrator, run_export
from warehouse_export.export.tokens import RunContext
from warehouse_export.logging.logger import init_logging
from warehouse_export.storage.blob_store import DATA_AREA

st.set_page_config(page_title="Quiz Data Warehouse Export", layout="wide")


@st.cache_resource
def bootstrap():
    settings = load_settings(str(_ROOT / "config"))
    init_logging(settings.log_level, settings.log_file)
    catalog = CatalogStore(settings.catalog_dir)
    orch = build_orchestrator(settings)
    return settings, catalog, orch


try:
    settings, catalog, orch = bootstrap()
except Exception:
    st.error("Startup failed. See error below.")
    st.code(traceback.format_exc())
    raise

st.title("Quiz data warehouse export")

with st.sidebar:
    st.subheader("Run as")
    user_id = st.number_input("User id", min_value=1, step=1, value=2)
    course_id = st.number_input("Course id", min_value=1, step=1, value=1)
    cmid = st.number_input("Course module id", min_value=1, step=1, value=1)
    quiz_id = st.number_input("Quiz id", min_value=0, step=1, value=0)

queries = catalog.list_queries(enabled_only=True)
backends = catalog.available_backends(int(user_id))

if not queries:
    st.warning("No enabled queries. Create one in the catalog first.")
if not backends:
    st.warning("No backend is available for this user.")

c1, c2 = st.columns(2)
with c1:
    query_opts = {f"{q.name} (#{q.id})": q for q in queries}
    query_label = st.selectbox("Query", list(query_opts.keys()))
    if query_label:
        st.caption(query_opts[query_label].description)
with c2:
    backend_opts = {f"{b.name} (#{b.id})": b for b in backends}
    backend_label = st.selectbox("Backend", list(backend_opts.keys()))
    if backend_label:
        st.caption(backend_opts[backend_label].description)

if st.button("Execute", disabled=not (query_label and backend_label)):
    context = RunContext(
        user_id=int(user_id),
        course_id=int(course_id),
        course_module_id=int(cmid),
        quiz_id=int(quiz_id),
    )
    with st.spinner("Running export..."):
        try:
            res = run_export(
                settings,
                catalog,
                query_opts[query_label].id,
                backend_opts[backend_label].id,
                context,
                orchestrator=orch,
            )
        except WarehouseExportError as e:
            st.error(f"Nothing was generated: {e}")
        else:
            if res.status == ExportStatus.DELIVERED:
                st.success(res.describe())
            else:
                st.warning(res.describe())
            if res.exceeded:
                st.info(f"The result was truncated at {settings.query_limit} rows.")

st.subheader("Generated files")
files = orch.blob_store.list_files(settings.storage_component, DATA_AREA)
if files:
    st.dataframe([asdict(f) for f in files], use_container_width=True)
else:
    st.caption("No files generated yet.")
