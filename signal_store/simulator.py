# sEMG device simulator
"""
This module simulates a wireless sEMG armband uploading to the ingestion API.
- build a 10-channel recording, either synthetic or replayed from an EDF file
- slice it into upload batches the way the mobile app does
- post each batch, then finalize the session

A 1000 Hz, 10-channel device produces 10,000 values per second; a 5 minute
session is 300,000 samples per channel, uploaded as 600 batches of 500.
"""

import random
import sys
import time
from datetime import datetime, timezone

import httpx
import mne
import numpy as np

from signal_store.config import CHANNEL_COUNT, USER_HEADER


def load_edf_file(edf_file):
    """Load EDF file and return channel names, data in microvolts and sample rate"""
    raw = mne.io.read_raw_edf(str(edf_file), preload=True, verbose=False)
    return raw.ch_names, raw.get_data() * 1e6, int(raw.info["sfreq"])


def synthetic_emg(duration_sec: float, sfreq: int = 1000, channels: int = CHANNEL_COUNT, seed: int | None = None):
    """Gaussian noise with periodic contraction bursts, shape (channels x samples)"""
    rng = np.random.default_rng(seed)
    n = int(duration_sec * sfreq)
    t = np.arange(n) / sfreq
    # 2 s contraction every 4 s, phase shifted per channel
    envelope = np.stack([0.2 + 0.8 * (np.sin(2 * np.pi * 0.25 * t + ch) > 0) for ch in range(channels)])
    return envelope * rng.normal(0.0, 50.0, size=(channels, n))


def make_batches(session_id: str, data, sfreq: int, start_ms: float, batch_size: int = 500) -> list:
    """Split a (channels x samples) recording into upload batch payloads"""
    batches = []
    data = np.asarray(data)[:CHANNEL_COUNT]
    num_samples = data.shape[1]
    step_ms = 1000.0 / sfreq
    for start in range(0, num_samples, batch_size):
        block = data[:, start : start + batch_size]
        timestamps = [start_ms + (start + i) * step_ms for i in range(block.shape[1])]
        samples = [
            {"timestamp": ts, "values": block[:, i].round(4).tolist(), "sessionId": session_id}
            for i, ts in enumerate(timestamps)
        ]
        batches.append(
            {
                "sessionId": session_id,
                "samples": samples,
                "deviceInfo": {"name": "Simulated sEMG", "address": "00:00:00:00:00:00"},
                "batchInfo": {"size": len(samples), "startTime": timestamps[0], "endTime": timestamps[-1]},
            }
        )
    return batches


def stream_session(
    session_id: str,
    batches: list,
    user_id: str = "simulator",
    api_url: str = "http://localhost:8000",
    sfreq: int = 1000,
    shuffle: bool = False,
    delay: float = 0.01,
):
    """Create the session, upload every batch, then finalize"""
    if shuffle:
        # uploads retried by the app arrive out of order
        batches = random.sample(batches, len(batches))
    headers = {USER_HEADER: user_id}
    total = len(batches)

    with httpx.Client(base_url=api_url, timeout=30.0, headers=headers) as client:
        response = client.post(
            "/api/sessions",
            json={
                "sessionId": session_id,
                "deviceId": "sim-001",
                "deviceName": "Simulated sEMG",
                "deviceType": "sEMG",
                "startTime": datetime.now(timezone.utc).isoformat(),
                "sampleRate": sfreq,
            },
        )
        response.raise_for_status()

        for i, batch in enumerate(batches):
            try:
                response = client.post("/api/semg/batch", json=batch)
                response.raise_for_status()
                if (i + 1) % 10 == 0 or i == 0:
                    print(f"  Sent {i + 1}/{total} batches for {session_id}")
            except httpx.HTTPError as e:
                print(f"Error sending batch {i}: {e}")
                break
            time.sleep(delay)

        response = client.post(f"/api/sessions/{session_id}/finalize")
        response.raise_for_status()
        return response.json()


if __name__ == "__main__":
    sfreq = 1000
    session_id = f"session_{int(time.time() * 1000)}_sim"

    if len(sys.argv) > 1:
        ch_names, data, sfreq = load_edf_file(sys.argv[1])
        print(f"Replaying {sys.argv[1]}: {len(ch_names)} channels at {sfreq} Hz")
    else:
        data = synthetic_emg(duration_sec=10, sfreq=sfreq, seed=42)

    batches = make_batches(session_id, data, sfreq, start_ms=time.time() * 1000)
    print(f"Sending {len(batches)} batches for {session_id}...")
    result = stream_session(session_id, batches, sfreq=sfreq, shuffle=True)
    print(f"Done! {result}")
