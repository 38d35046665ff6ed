import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt


def plot_piano_roll(roll, buttons=None, title="Generated Performance", save_path=None):
    """
    roll: (T, num_keys) numpy array, one row per button press
    buttons: optional sequence of button indices, drawn as a second panel
    """
    nrows = 2 if buttons is not None else 1
    fig, axes = plt.subplots(
        nrows,
        1,
        figsize=(10, 5 if buttons is not None else 4),
        sharex=True,
        squeeze=False,
    )
    ax = axes[0, 0]
    im = ax.imshow(
        roll.T,
        aspect="auto",
        origin="lower",
        cmap="magma",
        vmin=0,
        vmax=1,
        interpolation="none",
    )
    ax.set_ylabel("Piano key")
    ax.set_title(title)

    # octave ticks, key 3 is C1
    c_keys = range(3, roll.shape[1], 12)
    ax.set_yticks(c_keys)
    ax.set_yticklabels([f"C{i + 1}" for i in range(len(c_keys))])

    if buttons is not None:
        bx = axes[1, 0]
        bx.step(range(len(buttons)), buttons, where="mid")
        bx.set_ylabel("Button")
        bx.set_xlabel("Press")
    else:
        ax.set_xlabel("Press")

    cbar = fig.colorbar(im, ax=ax, pad=0.02)
    cbar.set_label("Played", rotation=270, labelpad=15)

    plt.tight_layout()
    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches="tight")
    plt.close(fig)
    return save_path
