"""
Streamlit UI for the MaaS gateway dashboard.

Pages:
- Dashboard: headline counts, data source, component status
- Live Requests: recent gateway traffic with per-request detail
- Policies: Kuadrant AuthPolicy / RateLimitPolicy browser
- Request Simulator: single requests per tier and a background traffic generator
"""

from __future__ import annotations

import time

import pandas as pd
import requests
import streamlit as st

from maas_dashboard.config import UIConfig
from maas_dashboard.simulator import TIERS, get_simulator

# Page configuration
st.set_page_config(
    page_title="MaaS Gateway Dashboard",
    page_icon="🛡️",
    layout="wide",
    initial_sidebar_state="expanded",
)

UI_CONFIG = UIConfig.from_env()
API_BASE_URL = UI_CONFIG.api_base_url
HEALTH_URL = API_BASE_URL.rsplit("/api/", 1)[0] + "/health"


def api_request(method: str, endpoint: str, **kwargs) -> dict | None:
    """Call the dashboard API and return the envelope's `data`, or None on failure."""
    try:
        response = requests.request(method, f"{API_BASE_URL}{endpoint}", timeout=30, **kwargs)
        body = response.json()
    except (requests.RequestException, ValueError) as e:
        st.error(f"Connection Error: {e}")
        return None
    if response.status_code == 200 and body.get("success"):
        return body.get("data")
    st.error(f"API Error: {response.status_code} - {body.get('error', response.text)}")
    return None


def render_sidebar():
    """Render the sidebar with navigation and API status."""
    st.sidebar.title("🛡️ MaaS Gateway")
    st.sidebar.markdown("---")

    page = st.sidebar.radio(
        "Navigation",
        ["Dashboard", "Live Requests", "Policies", "Request Simulator"],
        index=0,
    )

    st.sidebar.markdown("---")

    try:
        health = requests.get(HEALTH_URL, timeout=5).json().get("data") or {}
    except (requests.RequestException, ValueError):
        health = {}

    if health.get("status") == "healthy":
        st.sidebar.text("API Status: 🟢 Online")
        st.sidebar.text(f"Namespace: {health.get('namespace')}")
        st.sidebar.text(f"Kubernetes: {health.get('kubernetes') or 'not loaded'}")
        if health.get("mock_data"):
            st.sidebar.warning("Serving mock data")
    else:
        st.sidebar.text("API Status: 🔴 Offline")

    return page


def _status_badge(connected: bool) -> str:
    return "🟢 Connected" if connected else "🔴 Disconnected"


def render_dashboard():
    """Render the main dashboard page."""
    st.title("MaaS Gateway Dashboard")
    st.markdown("Policy enforcement across the model gateway.")

    data = api_request("GET", "/metrics/dashboard")
    if not data:
        st.warning("Unable to fetch dashboard statistics. Is the API running?")
        st.code("python -m maas_dashboard.run api", language="bash")
        return

    status = data.get("kuadrantStatus", {})
    source = data.get("source", "unknown")
    if source == "prometheus-metrics":
        st.success("Source: Prometheus metrics")
    else:
        st.info("Source: live request logs (Prometheus had no data)")

    col1, col2, col3, col4, col5 = st.columns(5)
    col1.metric("Total Requests", int(data.get("totalRequests", 0)))
    col2.metric("Accepted", int(data.get("acceptedRequests", 0)))
    col3.metric("Rejected", int(data.get("rejectedRequests", 0)))
    col4.metric("Auth Failed", int(data.get("authFailedRequests", 0)))
    col5.metric("Rate Limited", int(data.get("rateLimitedRequests", 0)))

    st.header("Kuadrant Components")
    col1, col2, col3 = st.columns(3)
    col1.markdown(f"**Limitador:** {_status_badge(status.get('limitadorConnected', False))}")
    col2.markdown(f"**Authorino:** {_status_badge(status.get('authorinoConnected', False))}")
    col3.markdown(f"**Traffic seen:** {'yes' if status.get('hasRealTraffic') else 'no'}")
    if status.get("error"):
        st.caption(f"Last status error: {status['error']}")

    if data.get("authByNamespace"):
        st.subheader("Auth Evaluations by Namespace")
        st.bar_chart(data["authByNamespace"])

    if data.get("limitsByNamespace"):
        st.subheader("Limit Checks by Namespace")
        st.bar_chart(data["limitsByNamespace"])

    authorino = data.get("authorinoStats", {})
    st.subheader("Authorino Controller")
    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Auth Configs", authorino.get("authConfigs", 0))
    col2.metric("Evaluations", int(authorino.get("totalEvaluations", 0)))
    col3.metric("Reconciles", int(authorino.get("reconcileOperations", 0)))
    col4.metric("Avg Reconcile", f"{authorino.get('avgReconcileTime', 0) * 1000:.1f}ms")

    with st.expander("Debug info"):
        st.json(status.get("debugInfo", {}))

    if st.checkbox("Auto-refresh (5s)", value=False):
        time.sleep(5)
        st.rerun()


def render_live_requests():
    """Render the live request table and detail view."""
    st.title("Live Requests")

    live = api_request("GET", "/metrics/live-requests")
    if live is None:
        return
    if not live:
        st.info("No requests seen in the last hour.")
        return

    decision_filter = st.selectbox("Decision", ["All", "accept", "reject"])
    rows = [r for r in live if decision_filter == "All" or r.get("decision") == decision_filter]

    frame = pd.DataFrame([
        {
            "time": r.get("timestamp"),
            "id": r.get("requestId"),
            "method": r.get("method"),
            "path": r.get("path"),
            "status": r.get("statusCode"),
            "decision": r.get("decision"),
            "policy": r.get("policyType", ""),
            "ms": round(r.get("responseTime", 0), 1),
            "source": r.get("sourceIP", ""),
        }
        for r in rows
    ])
    st.dataframe(frame, use_container_width=True, hide_index=True)

    stats = api_request("GET", "/metrics/policy-stats")
    if stats:
        st.subheader("Policy Decisions")
        col1, col2 = st.columns(2)
        col1.bar_chart(stats["policyDecisions"]["authPolicy"])
        col2.bar_chart(stats["policyDecisions"]["rateLimitPolicy"])

    selected = st.selectbox("Request details", [r.get("requestId") for r in rows])
    if selected:
        detail = api_request("GET", f"/metrics/requests/{selected}")
        if detail:
            st.json(detail)


def render_policies():
    """Render the Kuadrant policy browser."""
    st.title("Kuadrant Policies")

    connection = api_request("GET", "/policies/connection")
    if connection and not connection.get("connected"):
        st.warning(f"Kuadrant API not reachable: {connection.get('error')}")

    label = st.selectbox("Policy type", ["All", "Auth", "Rate limit"])
    params = {"type": {"Auth": "auth", "Rate limit": "rateLimit"}[label]} if label != "All" else {}

    policies = api_request("GET", "/policies", params=params)
    if policies is None:
        return
    if not policies:
        st.info("No policies found.")
        return

    for policy in policies:
        active = "🟢" if policy.get("isActive") else "🔴"
        with st.expander(f"{active} **{policy['name']}** ({policy['kind']}) - {policy['namespace']}"):
            st.markdown(policy.get("description", ""))
            target = policy.get("targetRef", {})
            st.text(f"Target: {target.get('kind', '?')}/{target.get('name', '?')}")
            for item in policy.get("items", []):
                st.markdown(f"`{item['id']}` ({item['type']})")
                st.json(item["config"], expanded=False)
            if policy.get("status", {}).get("conditions"):
                st.subheader("Conditions")
                st.json(policy["status"]["conditions"], expanded=False)


def render_simulator():
    """Render the request simulator page."""
    st.title("Request Simulator")
    st.markdown("Send chat completions through the gateway to exercise its policies.")

    st.header("Single Request")
    col1, col2 = st.columns(2)
    with col1:
        tier = st.selectbox("Tier", list(TIERS))
        model = st.selectbox("Model", list(UI_CONFIG.models.values()))
    with col2:
        prompt = st.text_area("Prompt", value="Hello, how are you?")
        max_tokens = st.number_input("Max tokens", min_value=1, max_value=4096, value=50)

    if st.button("Send Request", type="primary"):
        simulator = get_simulator()
        response = simulator.send(tier, model=model, prompt=prompt, max_tokens=int(max_tokens))
        if response is None:
            st.error("Could not reach the dashboard API.")
        else:
            if response.ok:
                st.success(f"{response.status_code}: accepted")
            else:
                st.error(f"{response.status_code}: rejected")
            try:
                st.json(response.json())
            except ValueError:
                st.text(response.text)

    st.markdown("---")
    render_traffic_generator()


def render_traffic_generator():
    st.header("Traffic Generator")
    simulator = get_simulator()

    is_running = simulator.is_running()
    st.subheader(f"Status: {'🟢 Running' if is_running else '🔴 Stopped'}")

    col1, col2 = st.columns(2)
    with col1:
        if is_running:
            if st.button("Stop Simulator"):
                simulator.stop()
                st.rerun()
        else:
            if st.button("Start Simulator"):
                simulator.start()
                st.rerun()
    with col2:
        if st.button("Reset Stats"):
            simulator.reset_stats()
            st.rerun()

    rps = st.slider(
        "Requests per Second",
        min_value=0.1,
        max_value=10.0,
        value=simulator.config.requests_per_second,
        step=0.1,
    )
    if rps != simulator.config.requests_per_second:
        simulator.update_config(requests_per_second=rps)

    st.subheader("Tier Weights")
    weights = {}
    cols = st.columns(len(TIERS))
    for col, tier in zip(cols, TIERS):
        with col:
            weights[tier] = st.slider(
                tier,
                min_value=0.0,
                max_value=1.0,
                value=simulator.config.tier_weights.get(tier, 0.0),
                step=0.05,
                key=f"weight_{tier}",
            )
    if st.button("Update Weights"):
        simulator.update_config(tier_weights=weights)
        st.success("Weights updated!")

    st.subheader("Statistics")
    stats = simulator.get_stats()
    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Total Requests", stats["total_requests"])
    col2.metric("Successful", stats["successful_requests"])
    col3.metric("Failed", stats["failed_requests"])
    col4.metric("Success Rate", f"{stats['success_rate']}%")

    if stats.get("requests_by_tier"):
        st.subheader("Requests by Tier")
        st.bar_chart(stats["requests_by_tier"])

    if stats.get("requests_by_status"):
        st.subheader("Responses by Status")
        st.bar_chart(stats["requests_by_status"])

    if stats.get("recent_errors"):
        st.subheader("Recent Errors")
        for error in stats["recent_errors"]:
            st.error(f"{error['time']}: {error['tier']} - {error['error']}")

    if is_running:
        if st.checkbox("Auto-refresh stats (2s)", value=True):
            time.sleep(2)
            st.rerun()


def main():
    """Main application entry point."""
    page = render_sidebar()

    if page == "Dashboard":
        render_dashboard()
    elif page == "Live Requests":
        render_live_requests()
    elif page == "Policies":
        render_policies()
    elif page == "Request Simulator":
        render_simulator()


if __name__ == "__main__":
    main()
