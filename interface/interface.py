import os
import streamlit as st
import requests

from waste_classifier import SUPPORTED_LANGUAGES, DEFAULT_LANGUAGE
from interface.image_utils import compress_image, to_data_uri

st.set_page_config(page_title="EcoSort", page_icon="♻️")

st.title("♻️ EcoSort")
st.caption("Photograph your waste and find the right bin.")

BIN_STYLES = {
    "Blue": "#1d4ed8",
    "Green": "#15803d",
    "Red": "#b91c1c",
    "Yellow": "#ca8a04",
    "Black": "#111827",
}

# Sidebar
with st.sidebar:
    api_url = st.text_input("API URL", value=os.getenv("API_URL", "http://localhost:8000"))
    language = st.selectbox("Language", SUPPORTED_LANGUAGES, index=SUPPORTED_LANGUAGES.index(DEFAULT_LANGUAGE))
    token = st.text_input("API token (optional)", type="password")

headers = {"Authorization": f"Bearer {token}"} if token else {}


def send_feedback(prediction: dict, feedback_type: str, history_id: str = None):
    try:
        response = requests.post(
            f"{api_url}/feedback",
            json={"item": prediction, "feedbackType": feedback_type, "historyId": history_id},
            headers=headers,
            timeout=15,
        )
        if response.status_code == 201:
            st.toast("Thanks for the feedback!")
        else:
            st.toast(f"Could not send feedback ({response.status_code})")
    except requests.RequestException as e:
        st.toast(f"Could not send feedback: {e}")


# Input
camera_photo = st.camera_input("Take a photo")
uploaded_file = st.file_uploader("...or upload one", type=["jpg", "jpeg", "png", "gif", "webp"])
source = camera_photo or uploaded_file

if source is not None:
    st.image(source, width="stretch")

    if st.button("Classify", type="primary"):
        with st.spinner("Analyzing..."):
            image_data = to_data_uri(compress_image(source.getvalue()))
            try:
                response = requests.post(
                    f"{api_url}/classify-waste",
                    json={"imageBase64": image_data, "language": language},
                    headers=headers,
                    timeout=90,
                )
                if response.status_code == 200:
                    st.session_state["result"] = response.json()
                else:
                    st.session_state.pop("result", None)
                    st.error(response.json().get("error", f"Error: {response.status_code}"))
            except requests.RequestException as e:
                st.session_state.pop("result", None)
                st.error(f"Error: {e}")

# Resultado
result = st.session_state.get("result")
if result:
    predictions = result.get("predictions", [])
    if not predictions:
        st.info("No waste items were found in this photo.")
    for i, prediction in enumerate(predictions):
        color = BIN_STYLES.get(prediction["binColor"], "#6b7280")
        with st.container(border=True):
            st.markdown(
                f"### {prediction['item']}\n"
                f"<span style='background:{color};color:white;padding:2px 10px;border-radius:8px'>"
                f"{prediction['binColor']} bin</span> &nbsp; {prediction['category']}",
                unsafe_allow_html=True,
            )
            st.progress(min(prediction["confidence"], 100) / 100, text=f"Confidence: {prediction['confidence']}%")
            st.write(prediction["disposal"])

            cols = st.columns(3)
            for col, (label, feedback_type) in zip(cols, [("👍 Correct", "yes"), ("👎 Wrong", "no"), ("🤔 Not sure", "not_sure")]):
                if col.button(label, key=f"feedback-{i}-{feedback_type}"):
                    send_feedback(prediction, feedback_type, result.get("historyId"))
