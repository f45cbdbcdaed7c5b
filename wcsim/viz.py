# plotting helpers

import matplotlib.pyplot as plt
import seaborn as sns

from wcsim.bracket import ROUNDS


def plot_advancement(advancement, top_n=16, ax=None):
    """Heatmap of P(reach round) for the top_n title contenders."""
    df = advancement.head(top_n)[list(ROUNDS[1:])] * 100
    if ax is None:
        _, ax = plt.subplots(figsize=(9, 0.4 * len(df) + 1.5))
    sns.heatmap(df, annot=True, fmt=".0f", cmap="Blues", vmin=0, vmax=100, cbar=False, ax=ax)
    ax.set_xlabel("")
    ax.set_ylabel("")
    ax.set_title("Probability of reaching each round (%)")
    return ax


def plot_match(match_probs, ax=None):
    """Bar chart of who plays in one fixture (output of match_probabilities)."""
    df = match_probs.head(12)
    if ax is None:
        _, ax = plt.subplots(figsize=(8, 5))
    sns.barplot(x=df["p_play"] * 100, y=df["team"], color="#003366", ax=ax)
    ax.set_xlabel("Probability of appearing (%)")
    ax.set_ylabel("")
    ax.set_title(match_probs.attrs.get("match", ""))
    return ax
