"""
Streamlit dosetrack dashboard.
Main page: substance status, record dose (with override flow), phase timeline.
Sidebar: substance picker, add from catalog, overview, system.
Mobile-first, talks to the API only.
"""

import json
from datetime import datetime, timedelta

import httpx
import pandas as pd
import plotly.graph_objects as go
import streamlit as st

from dosetrack.config import API_KEY, API_URL, PHASE_TICK_INTERVAL_SEC

# --- Config ---
API_BASE = API_URL
HEADERS = {"x-api-key": API_KEY} if API_KEY else {}


def api_get(path: str, params: dict | None = None) -> dict | list:
    try:
        r = httpx.get(f"{API_BASE}{path}", params=params, headers=HEADERS, timeout=10)
        r.raise_for_status()
        return r.json()
    except httpx.HTTPError as e:
        st.error(f"API Error: {e}")
        return {}


def api_send(method: str, path: str, data: dict | None = None) -> tuple[int, dict]:
    """POST/PATCH/DELETE returning (status code, body) so callers can react to 409/422."""
    try:
        r = httpx.request(method, f"{API_BASE}{path}", json=data, headers=HEADERS, timeout=10)
    except httpx.HTTPError as e:
        st.error(f"API Error: {e}")
        return 0, {}
    try:
        body = r.json()
    except ValueError:
        body = {}
    if r.status_code >= 400 and r.status_code not in (409, 422):
        st.error(f"API Error {r.status_code}: {body.get('detail', r.text) if isinstance(body, dict) else r.text}")
    return r.status_code, body


def api_post(path: str, data: dict) -> tuple[int, dict]:
    return api_send("POST", path, data)


def api_delete(path: str) -> tuple[int, dict]:
    return api_send("DELETE", path)


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except (ValueError, TypeError):
        return None


def _fmt_hours(hours: float | None) -> str:
    if hours is None:
        return "-"
    minutes = int(round(hours * 60))
    h, m = divmod(minutes, 60)
    if h == 0:
        return f"{m}m"
    return f"{h}h {m}m" if m else f"{h}h"


# --- Plotly mobile-friendly helper ---
PLOTLY_MOBILE_CONFIG = {
    "displayModeBar": False,
    "scrollZoom": False,
    "staticPlot": False,
    "responsive": True,
}

PLOTLY_MOBILE_LAYOUT = dict(
    dragmode=False,
    template="plotly_dark",
    margin=dict(l=40, r=20, t=40, b=35),
    legend=dict(orientation="h", yanchor="bottom", y=1.02),
    xaxis=dict(fixedrange=True),
    yaxis=dict(fixedrange=True),
)

PHASE_COLORS = {
    "onset": "#4FC3F7",
    "peak": "#F44336",
    "offset": "#FF9800",
    "comedown": "#9C27B0",
}

STATUS_LABELS = {"normal": "OK", "early": "EARLY", "warning": "SOON", "override": "OVERRIDE"}


def mobile_chart(fig, height=350, **kwargs):
    """Render a Plotly chart with mobile-friendly settings (no accidental zoom/pan)."""
    fig.update_layout(**PLOTLY_MOBILE_LAYOUT, height=height, **kwargs)
    st.plotly_chart(fig, use_container_width=True, config=PLOTLY_MOBILE_CONFIG)


def phase_timeline_chart(phase: dict, profile: dict):
    """Horizontal bar of the phases of the last dose with a 'now' marker."""
    dose_time = _parse_time(phase.get("doseTime"))
    if dose_time is None:
        st.info("No dose recorded yet")
        return
    fig = go.Figure()
    start = dose_time
    for name in ("onset", "peak", "offset", "comedown"):
        end = _parse_time(phase.get("phaseEndTimes", {}).get(name))
        if end is None or end <= start:
            continue
        fig.add_trace(go.Bar(
            x=[(end - start).total_seconds() * 1000],
            y=["Effect"],
            base=[start],
            orientation="h",
            name=name.capitalize(),
            marker=dict(color=PHASE_COLORS[name]),
            hovertext=profile.get("safetyInfo", {}).get(name, ""),
        ))
        start = end
    now = dose_time + timedelta(minutes=phase.get("elapsedMinutes") or 0)
    fig.add_vline(
        x=now,
        line=dict(color="#FFFFFF", width=2),
        annotation_text="Now",
    )
    fig.update_layout(barmode="stack", xaxis_type="date", showlegend=True)
    mobile_chart(fig, height=180)


# --- Page Config ---
st.set_page_config(
    page_title="dosetrack",
    page_icon=None,
    layout="wide",
    initial_sidebar_state="collapsed",
)

# Mobile-first CSS
st.markdown("""
<style>
    .block-container {
        padding-top: 0.3rem;
        padding-left: 0.5rem;
        padding-right: 0.5rem;
        max-width: 100%;
    }
    div[data-testid="stMetric"] {
        background-color: #1e1e2e;
        border: 1px solid #333;
        border-radius: 10px;
        padding: 8px 10px;
    }
    .stButton > button {
        min-height: 52px;
        font-size: 1rem;
        border-radius: 10px;
    }
</style>
""", unsafe_allow_html=True)

# =========================================================
# SIDEBAR: Navigation + substance picker
# =========================================================
PAGES = ["Tracker", "Add substance", "Overview", "System"]

with st.sidebar:
    st.header("dosetrack")
    current_page = st.radio("Navigation", PAGES, index=0, label_visibility="collapsed")
    st.divider()
    substances = api_get("/api/substances")
    substances = substances if isinstance(substances, list) else []
    labels = {s["id"]: f"{s['name']} ({s.get('category', '')})" for s in substances}
    selected_id = None
    if labels:
        selected_id = st.selectbox(
            "Substance", list(labels), format_func=lambda i: labels[i], key="selected_id",
        )
    else:
        st.caption("No substances yet")


# =========================================================
# PAGE: Tracker (default)
# =========================================================
if current_page == "Tracker":
    if not selected_id:
        st.info("Add a substance to start tracking")
        st.stop()

    substance = api_get(f"/api/substances/{selected_id}")
    if not isinstance(substance, dict) or not substance:
        st.stop()
    settings = substance.get("settings", {})
    st.subheader(substance.get("name", "?"))
    if substance.get("description"):
        st.caption(substance["description"])

    # ---- Status (refreshes on the phase tick) ----
    @st.fragment(run_every=timedelta(seconds=PHASE_TICK_INTERVAL_SEC))
    def status_panel():
        verdict = api_get(f"/api/substances/{selected_id}/safety")
        nxt = api_get(f"/api/substances/{selected_id}/next-dose")
        phase = api_get(f"/api/substances/{selected_id}/phase")
        if not isinstance(verdict, dict) or not isinstance(phase, dict):
            return

        m1, m2, m3 = st.columns(3)
        m1.metric("Next dose", nxt.get("countdown", "-") if isinstance(nxt, dict) else "-")
        m2.metric("Today", f"{verdict.get('dosesToday', 0)} / {verdict.get('maxDailyDoses') or '-'}")
        m3.metric("Phase", phase.get("phase", "none").capitalize())

        if verdict.get("safe", True):
            if verdict.get("inOffsetPhase"):
                st.info("Last dose is in its offset phase: the interval rule no longer applies")
        else:
            st.warning(verdict.get("reason") or "Not safe to dose now")

        if phase.get("phase") not in (None, "none"):
            st.progress(min(phase.get("progressPercent", 0) / 100, 1.0),
                        text=f"{phase.get('progressPercent', 0):.0f}% through the effect timeline")
            st.caption(phase.get("safetyMessage", ""))
            profile = api_get(f"/api/profiles/{substance['name']}", {"category": substance.get("category")})
            phase_timeline_chart(phase, profile if isinstance(profile, dict) else {})

    status_panel()

    # ---- Record dose ----
    st.divider()
    st.subheader("Record dose")
    dosage = settings.get("defaultDosage", {})
    rc1, rc2 = st.columns(2)
    with rc1:
        amount = st.number_input("Amount", min_value=0.0, value=float(dosage.get("amount", 0)), key="amount")
    with rc2:
        unit = st.text_input("Unit", value=dosage.get("unit", "mg"), key="unit")
    with st.expander("Backdate"):
        dc1, dc2 = st.columns(2)
        with dc1:
            ddate = st.date_input("Date", value=datetime.now().date(), key="ddate")
        with dc2:
            dtime = st.time_input("Time", value=datetime.now().time().replace(second=0, microsecond=0), key="dtime")
        backdate = st.checkbox("Use this time", key="backdate")
    notes = st.text_input("Notes (optional)", key="notes")

    payload = {"dosage": {"amount": amount, "unit": unit}, "notes": notes}
    if backdate:
        payload["timestamp"] = datetime.combine(ddate, dtime).isoformat()

    if st.button("Record dose", type="primary", use_container_width=True):
        code, body = api_post(f"/api/substances/{selected_id}/doses", payload)
        if code == 201:
            st.session_state.pop("pending_override", None)
            st.success("Dose recorded")
            st.rerun()
        elif code == 409:
            st.session_state["pending_override"] = {"payload": payload, "detail": body.get("detail", {})}
        elif code == 422:
            st.error(f"Invalid input: {body.get('detail')}")

    pending = st.session_state.get("pending_override")
    if pending:
        detail = pending["detail"]
        v = detail.get("verdict", {})
        st.error(detail.get("message", "This dose breaks the timing rules"))
        st.caption(
            f"Since last dose: {_fmt_hours(v.get('timeSinceLastDoseHours'))} | "
            f"Remaining: {_fmt_hours(v.get('remainingTimeHours'))} | "
            f"Today: {v.get('dosesToday', 0)} / {v.get('maxDailyDoses', 0)}"
        )
        reason = st.text_area("Reason for override", key="override_reason")
        oc1, oc2 = st.columns(2)
        with oc1:
            if st.button("Record anyway", use_container_width=True, disabled=not reason.strip()):
                code, _ = api_post(f"/api/substances/{selected_id}/doses", {
                    **pending["payload"], "override": True, "overrideReason": reason,
                })
                if code == 201:
                    st.session_state.pop("pending_override", None)
                    st.success("Override recorded")
                    st.rerun()
        with oc2:
            if st.button("Cancel", use_container_width=True):
                st.session_state.pop("pending_override", None)
                st.rerun()

    # ---- History ----
    st.divider()
    st.subheader("History")
    doses = substance.get("doses", [])
    if doses:
        hdf = pd.DataFrame([{
            "time": d["timestamp"][:16].replace("T", " "),
            "dose": f"{d['dosage']['amount']:g} {d['dosage']['unit']}",
            "status": STATUS_LABELS.get(d.get("status"), d.get("status")),
            "reason": d.get("overrideReason") or "",
            "notes": d.get("notes", ""),
        } for d in doses])
        st.dataframe(hdf, use_container_width=True, hide_index=True)
        for d in doses[:5]:
            ec, dc = st.columns([5, 1])
            with ec:
                st.text(f"{d['timestamp'][:16].replace('T', ' ')} {d['dosage']['amount']:g} {d['dosage']['unit']}")
            with dc:
                if st.button("X", key=f"dd_{d['id']}"):
                    api_delete(f"/api/substances/{selected_id}/doses/{d['id']}")
                    st.rerun()
    else:
        st.info("No doses yet")

    # ---- Interactions ----
    st.divider()
    st.subheader("Interactions")
    interactions = api_get(f"/api/substances/{selected_id}/interactions")
    if isinstance(interactions, list) and interactions:
        for it in interactions:
            sev = it.get("severity", "low")
            text = f"[{sev.upper()}] {it.get('substanceName')}: {it.get('description')}"
            if sev == "high":
                st.error(text)
            elif sev == "medium":
                st.warning(text)
            else:
                st.caption(text)
    else:
        st.caption("No other substances tracked")

    # ---- Stats ----
    st.divider()
    st.subheader("Stats")
    stats = api_get(f"/api/substances/{selected_id}/stats")
    if isinstance(stats, dict) and stats:
        s1, s2, s3 = st.columns(3)
        s1.metric("Adherence (30d)", f"{stats.get('adherence_rate', 0):.0f}%")
        streak = stats.get("sober_streak_days")
        s2.metric("Sober streak", f"{streak} d" if streak is not None else "-")
        longest = stats.get("longest_sober_period_days")
        s3.metric("Longest", f"{longest} d" if longest is not None else "-")
        supply = stats.get("supply", {})
        if supply.get("tracked"):
            st.metric("Supply", f"{supply.get('current_supply', 0):g} {supply.get('unit', '')}",
                      delta=supply.get("message"), delta_color="off")
        for w in stats.get("warnings", []):
            (st.error if w.get("severity") == "high" else st.warning)(w.get("message", ""))

        times = [_parse_time(d["timestamp"]) for d in doses]
        times = [t for t in times if t is not None]
        if times:
            ddf = pd.DataFrame({"day": [t.date() for t in times]}).value_counts("day").sort_index()
            fig_d = go.Figure()
            fig_d.add_trace(go.Bar(x=list(ddf.index), y=list(ddf.values), marker=dict(color="#4FC3F7")))
            fig_d.add_hline(
                y=stats.get("max_daily_doses", 0),
                line=dict(color="#FF9800", width=1, dash="dot"),
                annotation_text="Daily max",
            )
            mobile_chart(fig_d, height=250, yaxis_title="Doses")

    # ---- Settings ----
    with st.expander("Settings"):
        with st.form("settings"):
            min_h = st.number_input("Hours between doses", min_value=0.25, step=0.5,
                                    value=float(settings.get("minTimeBetweenDosesHours", 4)))
            max_d = st.number_input("Max doses per day (0 = derive)", min_value=0, step=1,
                                    value=int(settings.get("maxDailyDoses") or 0))
            use_rec = st.checkbox("Use recommended timing", value=settings.get("useRecommendedTiming", False))
            feats = settings.get("features", {})
            f1 = st.checkbox("Daily limits", value=feats.get("dailyLimits", True))
            f2 = st.checkbox("Timing restrictions", value=feats.get("timingRestrictions", True))
            f3 = st.checkbox("Track supply", value=feats.get("supplyManagement", False))
            supply_val = st.number_input("Current supply", min_value=0.0,
                                         value=float(settings.get("currentSupply") or 0))
            if st.form_submit_button("Save", use_container_width=True):
                code, _ = api_send("PATCH", f"/api/substances/{selected_id}/settings", {
                    "minTimeBetweenDosesHours": min_h,
                    "maxDailyDoses": int(max_d),
                    "useRecommendedTiming": use_rec,
                    "currentSupply": supply_val if f3 else None,
                    "features": {"dailyLimits": f1, "timingRestrictions": f2, "supplyManagement": f3},
                })
                if code == 200:
                    st.success("Saved")
                    st.rerun()
        if st.button("Delete substance", use_container_width=True):
            api_delete(f"/api/substances/{selected_id}")
            st.rerun()


# =========================================================
# PAGE: Add substance
# =========================================================
elif current_page == "Add substance":
    st.header("Add substance")
    cat = api_get("/api/catalog")
    cats = ["all"] + (cat.get("categories", []) if isinstance(cat, dict) else [])
    query = st.text_input("Search", placeholder="Search medications...")
    chosen_cat = st.radio("Category", cats, horizontal=True)
    results = api_get("/api/catalog", {"q": query, "category": chosen_cat})
    entries = results.get("entries", []) if isinstance(results, dict) else []

    for entry in entries:
        with st.expander(f"{entry['name']} · {entry['dosage']}"):
            st.caption(entry.get("description", ""))
            if entry.get("warnings"):
                st.warning(entry["warnings"])
            supply0 = st.number_input("Initial supply", min_value=0.0, value=0.0, key=f"sup_{entry['name']}")
            if st.button("Add", key=f"add_{entry['name']}", use_container_width=True):
                code, _ = api_post("/api/substances", {
                    "name": entry["name"],
                    "settings": {"currentSupply": supply0} if supply0 > 0 else None,
                })
                if code == 201:
                    st.success(f"{entry['name']} added")
                    st.rerun()

    if query and not entries:
        st.info("No medications found matching your search")
        custom_cat = st.text_input("Category", value="Custom")
        if st.button(f'Add "{query}" as custom medication', type="primary", use_container_width=True):
            code, _ = api_post("/api/substances", {"name": query, "category": custom_cat})
            if code == 201:
                st.success(f"{query} added")
                st.rerun()


# =========================================================
# PAGE: Overview
# =========================================================
elif current_page == "Overview":
    st.header("Overview")
    rows = api_get("/api/overview")
    if isinstance(rows, list) and rows:
        odf = pd.DataFrame([{
            "substance": r["substance"]["name"],
            "category": r["substance"].get("category", ""),
            "phase": r["phase"].get("phase", "none"),
            "next dose": r["nextDose"].get("countdown", "-"),
            "today": f"{r['verdict'].get('dosesToday', 0)} / {r['verdict'].get('maxDailyDoses', 0)}",
            "safe now": "yes" if r["verdict"].get("safe", True) else "no",
            "supply": r["supply"].get("message", ""),
        } for r in rows])
        st.dataframe(odf, use_container_width=True, hide_index=True)
    else:
        st.info("Nothing tracked yet")


# =========================================================
# PAGE: System
# =========================================================
elif current_page == "System":
    st.header("System")
    status_data = api_get("/api/status")
    if isinstance(status_data, dict):
        sc1, sc2 = st.columns(2)
        sc1.metric("Service", status_data.get("service", "?"))
        sc2.metric("Status", status_data.get("status", "?"))
        st.caption(f"Server: {status_data.get('timestamp', '?')} ({status_data.get('timezone', '?')})")

    st.divider()
    st.subheader("Import")
    upload = st.file_uploader("Exported collection (JSON)", type=["json"])
    if upload is not None and st.button("Replace collection", type="primary"):
        try:
            data = json.loads(upload.getvalue())
        except ValueError as e:
            st.error(f"Not valid JSON: {e}")
        else:
            code, body = api_post("/api/import", data)
            if code == 200:
                st.success(f"Imported {body.get('imported', 0)} records ({body.get('rejected', 0)} skipped)")
