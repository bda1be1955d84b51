# offaxis_holography.py
#
# Demo driver: runs one HolographySession on a test pattern, a synthetic
# phase-bump hologram or an image file, then saves
#   - the raw spectrum with ranked sideband candidates marked
#   - a five-panel summary (spectrum, sideband, reconstructed magnitude,
#     wrapped phase, unwrapped phase)

from __future__ import annotations

import os

import numpy as np
import matplotlib

# ===========================
# USER CONFIG
# ===========================
INPUT_IMAGE = None                # path to an interference image; None -> synthetic input
TEST_PATTERN = "bump"             # any field_capture.TEST_PATTERNS entry, or "bump"
OUTPUT_DIR = "./Holography/output"

GRID_SIZE = 256
CARRIER_FREQUENCY = 32.0
UNWRAP_METHOD = "raster"
PEAK_SELECTION = "max"

BUMP_AMPLITUDE_RAD = 2.5
BUMP_SIGMA_FRAC = 0.15

BATCH_MODE = True
SAVE_SUMMARY_FIGURES = True

matplotlib.use("Agg" if BATCH_MODE else matplotlib.get_backend(), force=True)

import matplotlib.pyplot as plt

import holo_log
from field_capture import encode_phase_hologram, load_image
from holography_session import HolographyConfig, HolographySession
from spectrum_analyzer import fftshift_grid


def bump_phase(size, amplitude=BUMP_AMPLITUDE_RAD, sigma_frac=BUMP_SIGMA_FRAC):
    n = int(size)
    yy, xx = np.mgrid[0:n, 0:n].astype(np.float64)
    sigma = sigma_frac * n
    r2 = (xx - n / 2) ** 2 + (yy - n / 2) ** 2
    return amplitude * np.exp(-r2 / (2.0 * sigma * sigma))


def save_figure(fig, filename, output_dir=None):
    full_path = os.path.join(output_dir or OUTPUT_DIR, filename)
    fig.savefig(full_path, dpi=150, bbox_inches="tight")
    holo_log.log(f"Saved figure: {full_path}")


def plot_spectrum_with_peaks(display_magnitude, candidates, chosen_peak, title):
    """Candidates and chosen peak are unshifted (row, col); drawn on the shifted display."""
    n = display_magnitude.shape[0]
    c = n // 2

    fig, ax = plt.subplots(figsize=(6, 5))
    ax.imshow(display_magnitude, cmap="gray", vmin=0.0, vmax=1.0)
    ax.scatter([c], [c], s=30, marker="x")
    ax.set_title(title)
    ax.axis("off")

    for i, cand in enumerate(candidates):
        px, py = (cand.col + c) % n, (cand.row + c) % n
        ax.scatter([px], [py], s=18)
        ax.text(px + 3, py + 3, f"{i}", fontsize=8)

    py, px = chosen_peak
    px, py = (px + c) % n, (py + c) % n
    ax.scatter([px], [py], s=80, facecolors="none", edgecolors="r", linewidths=2)
    ax.text(px + 5, py + 5, "chosen", color="r", fontsize=9)
    return fig


def save_summary_figure(outputs, title="Off-axis reconstruction", output_dir=None):
    panels = [
        ("Spectrum |F| (log)", outputs.spectrum_magnitude),
        ("Sideband |G| (log)", outputs.sideband_magnitude),
        ("Reconstructed |g|", outputs.reconstructed_magnitude),
        ("Wrapped phase", outputs.wrapped_phase),
        ("Unwrapped phase", outputs.unwrapped_phase),
    ]
    fig, axes = plt.subplots(1, len(panels), figsize=(4 * len(panels), 4))
    for ax, (name, img) in zip(axes, panels):
        if img is None:
            ax.text(0.5, 0.5, "n/a", ha="center", va="center")
        else:
            im = ax.imshow(img, cmap="gray", vmin=0.0, vmax=1.0)
            plt.colorbar(im, ax=ax, fraction=0.046)
        ax.set_title(name)
        ax.axis("off")
    fig.suptitle(title)
    save_figure(fig, "reconstruction_summary.png", output_dir)
    plt.close(fig)


def _make_input(size, carrier, pattern):
    if INPUT_IMAGE is not None:
        holo_log.log(f"[CAPTURE] image: {INPUT_IMAGE}")
        return load_image(INPUT_IMAGE), None
    if pattern == "bump":
        phase = bump_phase(size)
        holo_log.log(f"[CAPTURE] synthetic bump hologram, carrier={carrier}")
        return encode_phase_hologram(phase, carrier), phase
    holo_log.log(f"[CAPTURE] test pattern '{pattern}', frequency={carrier}")
    return None, None


def main(
    input_image=None,
    test_pattern=None,
    output_dir=None,
    size=None,
    carrier_frequency=None,
    unwrap_method=None,
    peak_selection=None,
    save_summary_figures=None,
    debug=None,
    return_results=False,
):
    global INPUT_IMAGE, TEST_PATTERN, OUTPUT_DIR, GRID_SIZE, CARRIER_FREQUENCY
    global UNWRAP_METHOD, PEAK_SELECTION, SAVE_SUMMARY_FIGURES

    if input_image is not None:
        INPUT_IMAGE = input_image
    if test_pattern is not None:
        TEST_PATTERN = test_pattern
    if output_dir is not None:
        OUTPUT_DIR = output_dir
    if size is not None:
        GRID_SIZE = int(size)
    if carrier_frequency is not None:
        CARRIER_FREQUENCY = float(carrier_frequency)
    if unwrap_method is not None:
        UNWRAP_METHOD = unwrap_method
    if peak_selection is not None:
        PEAK_SELECTION = peak_selection
    if save_summary_figures is not None:
        SAVE_SUMMARY_FIGURES = bool(save_summary_figures)

    holo_log.configure(debug=debug, log_dir=OUTPUT_DIR)
    holo_log.ensure_output_dir(OUTPUT_DIR)
    holo_log.log("=== HOLOGRAPHY RUN START ===")

    def progress(stage, pct):
        holo_log.log(f"[PROGRESS] {pct:3d}% {stage}")

    session = HolographySession(HolographyConfig(
        size=GRID_SIZE,
        carrier_frequency=CARRIER_FREQUENCY,
        unwrap_method=UNWRAP_METHOD,
        peak_selection=PEAK_SELECTION,
        progress_callback=progress,
    ))

    image, encoded_phase = _make_input(GRID_SIZE, CARRIER_FREQUENCY, TEST_PATTERN)
    if image is None:
        session.capture_test_pattern(TEST_PATTERN, CARRIER_FREQUENCY)
    else:
        session.capture(image)
    outputs = session.process()

    holo_log.array_stats("unwrapped phase (normalized)", outputs.unwrapped_phase)
    desc = session.sideband
    holo_log.log(f"[SIDEBAND] peak(row,col)={desc.peak} freq(ky,kx)={desc.frequency} "
                 f"|F|={desc.peak_magnitude:.6g} fallback={desc.fallback_used}")
    holo_log.log(f"[PHASE] masked fraction={session.phase.masked_fraction:.3f}")

    corr = None
    if encoded_phase is not None:
        rec = session.unwrapped.cycles.ravel()
        ref = encoded_phase.ravel()
        corr = float(np.corrcoef(rec, ref)[0, 1]) if np.std(rec) > 0 else 0.0
        holo_log.log(f"[CHECK] correlation unwrapped vs encoded phase: {corr:.4f}")

    if SAVE_SUMMARY_FIGURES:
        fig = plot_spectrum_with_peaks(outputs.spectrum_magnitude, desc.candidates, desc.peak,
                                       "Spectrum + sideband candidates")
        save_figure(fig, "spectrum_peaks.png")
        plt.close(fig)

        fig, ax = plt.subplots(figsize=(5, 4))
        ax.imshow(fftshift_grid(desc.window), cmap="gray")
        ax.set_title("Band-pass weights (shifted)")
        ax.axis("off")
        save_figure(fig, "bandpass_window.png")
        plt.close(fig)

        save_summary_figure(outputs)

    for d in outputs.diagnostics:
        holo_log.log(f"[{d.level.upper()}] {d.stage}: {d.message}")
    holo_log.log("=== HOLOGRAPHY RUN END ===")

    holo_log.close_log()
    if return_results:
        return {"outputs": outputs, "sideband": desc, "correlation": corr}


if __name__ == "__main__":
    try:
        main()
    finally:
        holo_log.close_log()
