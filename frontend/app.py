import os
from urllib.parse import quote, urlsplit, urlunsplit

import requests
import streamlit as st

API_URL_DEFAULT = os.getenv("XHS_RELAY_API_URL", "http://127.0.0.1:8000/api/v1")

st.set_page_config(page_title="XHS Media Relay", layout="wide")

st.title("小红书素材转发台")
st.caption("粘贴小红书分享文案/链接 → 提取原图/视频 → 选择账号 → 发布到 Instagram / X。")

api_url = st.sidebar.text_input("Backend API", value=API_URL_DEFAULT)
verify = st.sidebar.checkbox("验证视频链接 (慢)", value=False)
tab_single, tab_batch = st.tabs(["单条", "批量"])


def _redact_url(u: str) -> str:
    # Avoid leaking query tokens (xsec_token etc.) in any UI/error output.
    try:
        sp = urlsplit(u)
        return urlunsplit((sp.scheme, sp.netloc, sp.path, "", ""))
    except ValueError:
        return u


@st.cache_data(ttl=900, show_spinner=False)
def _fetch_bytes(url: str) -> bytes | None:
    try:
        r = requests.get(url, timeout=20)
    except requests.RequestException:
        return None
    if not r.ok:
        return None
    return r.content


def _show_media(images: list[str], videos: list[str], key: str) -> list[str]:
    """Preview images through the proxy; return the links the operator kept."""
    chosen: list[str] = []
    if videos:
        st.caption(f"视频 {len(videos)} 个")
        for i, v in enumerate(videos):
            if st.checkbox(_redact_url(v), value=True, key=f"{key}_v{i}"):
                chosen.append(v)
            st.video(v)
    if images:
        st.caption(f"图片 {len(images)} 张")
        cols = st.columns(5)
        for i, u in enumerate(images):
            with cols[i % 5]:
                data = _fetch_bytes(f"{api_url}/proxy-image?url={quote(u, safe='')}")
                if data:
                    st.image(data, use_container_width=True)
                else:
                    st.caption("图片加载失败")
                if st.checkbox(f"#{i + 1}", value=True, key=f"{key}_i{i}"):
                    chosen.append(u)
    return chosen


def _publish_panel(media: list[str], default_caption: str, key: str) -> None:
    st.subheader("发布")
    if st.button("加载账号", key=f"{key}_load_dest"):
        resp = requests.get(f"{api_url}/post-bridge/destinations", timeout=30)
        if not resp.ok:
            st.error(f"账号加载失败: {resp.status_code}")
            st.code(resp.text)
        else:
            st.session_state["destinations"] = resp.json()

    dest = st.session_state.get("destinations") or {}
    platforms = dest.get("platforms") or {}
    options = {
        f"{p} @{d.get('handle')}": d.get("id")
        for p, items in platforms.items()
        for d in items
    }
    defaults = [label for label, dest_id in options.items() if dest_id in (dest.get("defaults") or [])]
    if dest.get("error"):
        st.caption(dest["error"])

    selected = st.multiselect("目标账号", list(options), default=defaults, key=f"{key}_dest")
    caption = st.text_area("文案", value=default_caption, height=120, key=f"{key}_caption")
    scheduled_at = st.text_input("定时 (ISO-8601, 可留空)", key=f"{key}_sched")

    if st.button("发布", type="primary", key=f"{key}_publish"):
        if not media:
            st.warning("没有选中的素材")
            return
        if not selected:
            st.warning("请选择至少一个账号")
            return
        payload = {
            "destinations": [options[s] for s in selected],
            "mediaUrls": media,
            "caption": caption,
            "scheduledAt": scheduled_at.strip() or None,
        }
        with st.spinner("发布中..."):
            resp = requests.post(f"{api_url}/post-bridge/publish", json=payload, timeout=120)
        if resp.ok:
            st.success("已提交")
            st.json(resp.json(), expanded=False)
        else:
            st.error(f"发布失败: {resp.status_code}")
            st.code(resp.text)


with tab_single:
    source_text = st.text_area(
        "小红书分享文案/链接",
        height=80,
        key="xhs_source_text",
        placeholder="粘贴包含 xhslink.com / xiaohongshu.com 的链接即可",
    )

    if st.button("提取素材", key="btn_extract", type="primary"):
        if not source_text.strip():
            st.warning("请先粘贴小红书链接/分享文案")
        else:
            with st.spinner("提取中..."):
                resp = requests.post(
                    f"{api_url}/extract",
                    json={"url": source_text, "verify": verify},
                    timeout=120,
                )
            data = resp.json() if resp.headers.get("content-type", "").startswith("application/json") else {}
            if not resp.ok:
                st.error(f"提取失败: {resp.status_code} {data.get('message') or data.get('error') or ''}")
                st.code(resp.text)
            else:
                st.session_state["single_result"] = data
                if data.get("error"):
                    st.info(data["error"])

    result = st.session_state.get("single_result") or {}
    if result:
        if result.get("title"):
            st.markdown(f"**{result['title']}**")
        st.caption(_redact_url(result.get("resolvedUrl") or ""))
        chosen = _show_media(result.get("imageLinks") or [], result.get("videoLinks") or [], key="single")
        with st.expander("调试"):
            st.json(
                {k: result.get(k) for k in ("debugUrls", "testedVideoUrl", "testResult", "videoProbes") if k in result},
                expanded=False,
            )
        _publish_panel(chosen, result.get("title") or "", key="single")


with tab_batch:
    batch_text = st.text_area("多条链接（每行一条）", height=160, key="xhs_batch_text")
    if st.button("批量提取", key="btn_batch", type="primary"):
        lines = [ln.strip() for ln in batch_text.splitlines() if ln.strip()]
        if not lines:
            st.warning("请先粘贴链接")
        else:
            with st.spinner("批量提取中..."):
                resp = requests.post(f"{api_url}/extract-batch", json={"urls": lines}, timeout=300)
            if not resp.ok:
                st.error(f"批量提取失败: {resp.status_code}")
                st.code(resp.text)
            else:
                st.session_state["batch_result"] = resp.json()

    batch = st.session_state.get("batch_result") or {}
    if batch.get("error"):
        st.info(batch["error"])
    for idx, post in enumerate(batch.get("posts") or []):
        with st.expander(f"{idx + 1}. {post.get('title') or _redact_url(post.get('url') or '')}", expanded=idx == 0):
            if post.get("error"):
                st.warning(post["error"])
            chosen = _show_media(post.get("images") or [], post.get("videos") or [], key=f"batch{idx}")
            _publish_panel(chosen, post.get("title") or "", key=f"batch{idx}")
