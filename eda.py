import os

import matplotlib.pyplot as plt
import pandas as pd
import seaborn as sns

from data_loading_and_cleaning import ensure_dir_exists, require_columns


def save_count_table(data, col_name, output_path):
    """
    Count the occurrences of each value in `col_name` and write them to CSV.

    The table has two columns, `col_name` and `n`, most frequent value first.
    Only values present in the column are counted. When the column itself is
    called `n` the count column is named `nn`.
    """
    require_columns(data, [col_name], 'data')

    counts = data[col_name].value_counts(sort=True, ascending=False, dropna=False)
    counts = counts[counts > 0]
    count_name = 'nn' if col_name == 'n' else 'n'
    count_table = pd.DataFrame({col_name: list(counts.index), count_name: counts.to_numpy()})

    ensure_dir_exists(os.path.dirname(output_path))
    count_table.to_csv(output_path, index=False)
    return count_table


def plot_adoption_distribution(data, adopted_col='adopted'):
    require_columns(data, [adopted_col], 'data')

    with sns.axes_style('whitegrid'), sns.plotting_context('notebook', font_scale=1.4):
        fig, ax = plt.subplots(figsize=(8, 6))
        sns.countplot(data=data, x=adopted_col, color='steelblue', ax=ax)
        for container in ax.containers:
            ax.bar_label(container, padding=3, fontsize=14)
        ax.set_title('Adoption Rate Distribution')
        ax.set_xlabel('Adopted')
        ax.set_ylabel('Count')
        fig.tight_layout()
    return fig


def plot_grouped_adoption(data, group_col, title, xlab, output_path,
                          adopted_col='adopted', width=10, height=8):
    """Save a dodged bar chart of adoption outcome counts for each level of `group_col`."""
    require_columns(data, [group_col, adopted_col], 'data')

    with sns.axes_style('whitegrid'), sns.plotting_context('notebook', font_scale=1.5):
        fig, ax = plt.subplots(figsize=(width, height))
        sns.countplot(data=data, x=group_col, hue=adopted_col, ax=ax)
        ax.set_title(title)
        ax.set_xlabel(xlab)
        ax.set_ylabel('Count')
        plt.setp(ax.get_xticklabels(), rotation=45, ha='right')
        fig.tight_layout()

        ensure_dir_exists(os.path.dirname(output_path))
        fig.savefig(output_path)
    plt.close(fig)


def plot_age_distribution(data, output_path, age_col='age', adopted_col='adopted',
                          width=15, height=10):
    require_columns(data, [age_col, adopted_col], 'data')

    with sns.axes_style('whitegrid'), sns.plotting_context('notebook', font_scale=1.8):
        fig, ax = plt.subplots(figsize=(width, height))
        sns.histplot(data=data, x=age_col, hue=adopted_col, bins=30, alpha=0.7,
                     multiple='layer', edgecolor='black', ax=ax)
        ax.set_title('Age Distribution by Adoption Status')
        ax.set_xlabel('Age (years)')
        ax.set_ylabel('Count')
        fig.tight_layout()

        ensure_dir_exists(os.path.dirname(output_path))
        fig.savefig(output_path)
    plt.close(fig)
