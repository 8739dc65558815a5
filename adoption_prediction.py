import os
import re
import warnings

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
from matplotlib.colors import LinearSegmentedColormap
from sklearn.compose import ColumnTransformer
from sklearn.ensemble import RandomForestClassifier
from sklearn.exceptions import NotFittedError
from sklearn.inspection import permutation_importance
from sklearn.metrics import accuracy_score, confusion_matrix, recall_score
from sklearn.model_selection import train_test_split
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import OneHotEncoder
from sklearn.utils.validation import check_is_fitted

from data_loading_and_cleaning import (
    assign_season,
    calculate_age_years,
    convert_to_factors,
    ensure_dir_exists,
    group_rare_categories,
    load_data,
    require_columns,
)
from eda import (
    plot_adoption_distribution,
    plot_age_distribution,
    plot_grouped_adoption,
    save_count_table,
)

RANDOM_SEED = 123
NTREE = 100
MTRY = 2

DATA_PATH = os.path.join('data', 'processed', 'longbeach_transformed.csv')
FIGURES_DIR = os.path.join('results', 'figures')
TABLES_DIR = os.path.join('results', 'tables')

REFERENCE_DATE = '2024-12-31'
TARGET = 'adopted'
POSITIVE_LEVEL = 'Yes'
NEGATIVE_LEVEL = 'No'
RARE_ANIMAL_TYPES = ['reptile', 'guinea pig', 'amphibian', 'livestock', 'wild']
CATEGORICAL_COLUMNS = ['animal_type', 'sex', 'intake_type', 'intake_condition', 'season', 'adopted']
MODEL_COLUMNS = ['adopted', 'age', 'animal_type', 'sex', 'intake_type', 'intake_condition', 'season']
FORMULA = 'adopted ~ .'

IMPORTANCE_LABELS = {
    'impurity': 'Mean decrease in impurity',
    'permutation': 'Mean decrease in accuracy',
}

_TERM = re.compile(r'^[^\s~+`]+$')


def _parse_term(term):
    term = term.strip()
    if len(term) > 2 and term.startswith('`') and term.endswith('`'):
        return term[1:-1]
    if _TERM.match(term):
        return term
    return None


def parse_formula(formula):
    """
    Split a formula such as 'adopted ~ age + sex' into its response and predictors.

    A '.' term stands for every column other than the response, in which case the
    predictor list is returned as None. Names containing spaces can be wrapped in
    backticks.
    """
    error = f'`formula` must be a valid formula string (e.g., "adopted ~ age + sex"), got: {formula!r}'
    if not isinstance(formula, str) or formula.count('~') != 1:
        raise ValueError(error)

    lhs, rhs = formula.split('~')
    response = _parse_term(lhs)
    terms = [_parse_term(t) if t.strip() != '.' else '.' for t in rhs.split('+')]
    if response is None or any(t is None for t in terms):
        raise ValueError(error)

    if '.' in terms:
        return response, None

    predictors = list(dict.fromkeys(terms))
    if response in predictors:
        raise ValueError(f"Response variable '{response}' cannot also be a predictor")
    return response, predictors


def _check_positive_number(value, name):
    if isinstance(value, (bool, np.bool_)) or not isinstance(value, (int, float, np.integer, np.floating)) \
            or not np.isfinite(value) or not value > 0:
        raise ValueError(f'`{name}` must be a single positive number.')


def _build_preprocessor(X):
    numeric_cols = [c for c in X.columns
                    if pd.api.types.is_numeric_dtype(X[c]) and not pd.api.types.is_bool_dtype(X[c])]
    categorical_cols = [c for c in X.columns if c not in numeric_cols]

    transformers = []
    if numeric_cols:
        transformers.append(('num', 'passthrough', numeric_cols))
    if categorical_cols:
        transformers.append(('cat', OneHotEncoder(handle_unknown='ignore', sparse_output=False), categorical_cols))
    return ColumnTransformer(transformers=transformers, remainder='drop')


def train_rf_model(d, formula, ntree=NTREE, mtry=MTRY, seed=RANDOM_SEED):
    """
    Train a random forest classifier from a formula and a data frame.

    Numeric predictors are used as they are and the rest are one-hot encoded.
    `mtry` is the number of encoded features sampled at each split; it is rounded,
    and reset with a warning when that falls outside 1 to the encoded width.
    The forest is seeded through `random_state`, so identical arguments give
    identical models.
    Returns a fitted Pipeline with 'preprocess' and 'forest' steps.
    """
    if not isinstance(d, pd.DataFrame):
        raise TypeError('`d` must be a data frame.')
    response, predictors = parse_formula(formula)
    _check_positive_number(ntree, 'ntree')
    _check_positive_number(mtry, 'mtry')
    if isinstance(seed, (bool, np.bool_)) or not isinstance(seed, (int, np.integer)):
        raise TypeError('`seed` must be an integer.')

    if response not in d.columns:
        raise ValueError(f"Response variable '{response}' not found in data")
    if predictors is None:
        predictors = [c for c in d.columns if c != response]
    else:
        missing_cols = [c for c in predictors if c not in d.columns]
        if missing_cols:
            raise ValueError(f"Missing required columns: {', '.join(missing_cols)}")
    if not predictors:
        raise ValueError('`formula` does not select any predictor columns.')

    X = d[predictors]
    y = d[response]

    preprocess = _build_preprocessor(X)
    encoded = preprocess.fit_transform(X)

    requested = int(round(mtry))
    max_features = min(max(requested, 1), encoded.shape[1])
    if max_features != requested:
        warnings.warn(f'invalid mtry: reset to within valid range ({max_features})', UserWarning)

    forest = RandomForestClassifier(
        n_estimators=max(int(ntree), 1),
        max_features=max_features,
        random_state=seed,
    )
    forest.fit(encoded, y)

    return Pipeline([('preprocess', preprocess), ('forest', forest)])


def _check_model(model):
    if not isinstance(model, Pipeline) or 'preprocess' not in model.named_steps \
            or not isinstance(model[-1], RandomForestClassifier):
        raise TypeError('`model` must be a random forest pipeline returned by train_rf_model.')
    try:
        check_is_fitted(model[-1])
    except NotFittedError as e:
        raise TypeError('`model` must be a fitted random forest.') from e


def evaluate_rf_model(model, test_d, target_col=TARGET,
                      positive_level=POSITIVE_LEVEL, negative_level=NEGATIVE_LEVEL):
    """
    Evaluate a trained forest on held-out data for a binary outcome.

    Returns a dict with:
      confusion_matrix -- DataFrame of counts, rows Actual, columns Predicted,
                          both ordered (positive_level, negative_level)
      metrics          -- DataFrame {Metric, Value}: Accuracy, Sensitivity, Specificity
      cm_summary       -- DataFrame {Metric, Count}: TP, FN, FP, TN
    """
    _check_model(model)
    if not isinstance(test_d, pd.DataFrame):
        raise TypeError('`test_d` must be a data frame.')
    if not isinstance(target_col, str):
        raise TypeError('`target_col` must be a single string.')
    if target_col not in test_d.columns:
        raise ValueError(f"Target column '{target_col}' not found in test data")
    if positive_level == negative_level:
        raise ValueError('`positive_level` and `negative_level` must differ.')

    predictors = list(model.feature_names_in_)
    require_columns(test_d, predictors, 'test_d')
    predictions = model.predict(test_d[predictors])

    levels = [positive_level, negative_level]
    predicted = pd.Categorical(predictions, categories=levels)
    actual = pd.Categorical(test_d[target_col], categories=levels)

    keep = ~(pd.isna(predicted) | pd.isna(actual))
    if not keep.all():
        warnings.warn(f'{int((~keep).sum())} rows outside {levels} were left out of the evaluation',
                      UserWarning)
    y_pred = np.asarray(predicted[keep], dtype=object)
    y_true = np.asarray(actual[keep], dtype=object)

    cm = pd.DataFrame(
        confusion_matrix(y_true, y_pred, labels=levels),
        index=pd.Index(levels, name='Actual'),
        columns=pd.Index(levels, name='Predicted'),
    )

    true_positive = cm.loc[positive_level, positive_level]
    false_negative = cm.loc[positive_level, negative_level]
    false_positive = cm.loc[negative_level, positive_level]
    true_negative = cm.loc[negative_level, negative_level]

    cm_summary = pd.DataFrame({
        'Metric': ['True Positives', 'False Negatives', 'False Positives', 'True Negatives'],
        'Count': [true_positive, false_negative, false_positive, true_negative],
    })

    metrics = pd.DataFrame({
        'Metric': ['Accuracy', 'Sensitivity', 'Specificity'],
        'Value': [
            accuracy_score(y_true, y_pred),
            recall_score(y_true, y_pred, labels=levels, pos_label=positive_level, zero_division=np.nan),
            recall_score(y_true, y_pred, labels=levels, pos_label=negative_level, zero_division=np.nan),
        ],
    })

    return {
        'confusion_matrix': cm,
        'metrics': metrics,
        'cm_summary': cm_summary,
    }


def _encoded_feature_owners(preprocess):
    # one entry per encoded column, naming the input column it came from
    owners = []
    for name, transformer, columns in preprocess.transformers_:
        if name == 'cat':
            for column, categories in zip(columns, transformer.categories_):
                owners.extend([column] * len(categories))
        elif name == 'num':
            owners.extend(columns)
    return owners


def feature_importance_table(model, importance_type='impurity', data=None, target_col=None,
                             seed=RANDOM_SEED):
    _check_model(model)
    if importance_type not in IMPORTANCE_LABELS:
        raise ValueError(f"importance_type must be one of {list(IMPORTANCE_LABELS)}")

    if importance_type == 'permutation':
        if not isinstance(data, pd.DataFrame) or not isinstance(target_col, str):
            raise ValueError('permutation importance needs a `data` frame and a `target_col` name.')
        predictors = list(model.feature_names_in_)
        require_columns(data, predictors + [target_col], 'data')
        result = permutation_importance(model, data[predictors], data[target_col],
                                        n_repeats=10, random_state=seed)
        table = pd.DataFrame({'Feature': predictors, 'Importance': result.importances_mean})
    else:
        owners = _encoded_feature_owners(model.named_steps['preprocess'])
        table = (
            pd.DataFrame({'Feature': owners, 'Importance': model[-1].feature_importances_})
            .groupby('Feature', as_index=False, sort=False)['Importance']
            .sum()
        )

    return table.sort_values('Importance', ascending=False).reset_index(drop=True)


def plot_confusion_matrix(cm, path_saved=None, color_low='#f1f1f1', color_high='#1f77b4',
                          text_color='white', text_size=16, title='Confusion Matrix Heatmap',
                          width=8, height=7):
    if not isinstance(cm, pd.DataFrame) or cm.empty or cm.shape[0] != cm.shape[1]:
        raise TypeError("The 'cm' parameter must be the confusion matrix returned by evaluate_rf_model")

    cmap = LinearSegmentedColormap.from_list('confusion', [color_low, color_high])

    with sns.axes_style('white'):
        fig, ax = plt.subplots(figsize=(width, height))
        sns.heatmap(cm, annot=True, fmt='d', cmap=cmap, ax=ax,
                    annot_kws={'color': text_color, 'size': text_size, 'weight': 'bold'})
        ax.set_title(title, fontsize=16, fontweight='bold')
        ax.set_xlabel('Predicted', fontsize=14, fontweight='bold')
        ax.set_ylabel('Actual', fontsize=14, fontweight='bold')
        ax.tick_params(labelsize=15)
        fig.tight_layout()

    if path_saved is not None:
        ensure_dir_exists(os.path.dirname(path_saved))
        fig.savefig(path_saved)
        print(f'Confusion Matrix Heatmap saved in: {path_saved}')

    return fig


def plot_feature_importance(model, path_saved=None, fill_color='steelblue', importance_type='impurity',
                            title='Feature Importance', width=10, height=8, data=None, target_col=None):
    """Bar chart of per-column importances, most important at the top."""
    table = feature_importance_table(model, importance_type, data=data, target_col=target_col)
    table['Feature'] = table['Feature'].astype(str)

    with sns.axes_style('whitegrid'):
        fig, ax = plt.subplots(figsize=(width, height))
        sns.barplot(data=table, x='Importance', y='Feature', color=fill_color, ax=ax)
        ax.set_title(title, fontsize=18, fontweight='bold')
        ax.set_xlabel(f'Importance ({IMPORTANCE_LABELS[importance_type]})', fontsize=16, fontweight='bold')
        ax.set_ylabel('Feature', fontsize=16, fontweight='bold')
        ax.tick_params(labelsize=14)
        fig.tight_layout()

    if path_saved is not None:
        ensure_dir_exists(os.path.dirname(path_saved))
        fig.savefig(path_saved)
        print(f'Feature Importance Plot saved in: {path_saved}')

    return fig


def prepare_adoption_data(df, reference_date=REFERENCE_DATE):
    require_columns(df, ['dob', 'intake_date', 'animal_type'], 'df')

    df = df.copy()
    df['age'] = calculate_age_years(df['dob'], reference_date=reference_date)
    df['season'] = assign_season(pd.to_datetime(df['intake_date'], errors='coerce').dt.month)
    df = group_rare_categories(df, 'animal_type', RARE_ANIMAL_TYPES)

    df = df.dropna(subset=[c for c in MODEL_COLUMNS if c in df.columns]).copy()
    df['age'] = df['age'].astype(int)
    return convert_to_factors(df, [c for c in CATEGORICAL_COLUMNS if c in df.columns])


def main():
    pd.set_option('display.max_columns', None)
    pd.set_option('display.width', 1000)

    print("Loading data...")
    try:
        df = load_data(DATA_PATH)
    except FileNotFoundError:
        print(f"Error: Could not find '{DATA_PATH}'")
        print("Please run the data preparation step first or ensure the file path is correct.")
        return None

    print("\n===== Preparing Data =====")
    df = prepare_adoption_data(df)
    require_columns(df, MODEL_COLUMNS, 'df')
    print(f"Prepared dataset shape: {df.shape}")

    print("\n===== Exploratory Analysis =====")
    save_count_table(df, 'animal_type', os.path.join(TABLES_DIR, 'animal_type_counts.csv'))
    save_count_table(df, TARGET, os.path.join(TABLES_DIR, 'adoption_counts.csv'))

    fig = plot_adoption_distribution(df, adopted_col=TARGET)
    ensure_dir_exists(FIGURES_DIR)
    fig.savefig(os.path.join(FIGURES_DIR, 'adoption_distribution.png'))
    plt.close(fig)

    plot_grouped_adoption(df, 'animal_type', 'Adoption by Animal Type', 'Animal Type',
                          os.path.join(FIGURES_DIR, 'adoption_by_type.png'))
    plot_grouped_adoption(df, 'season', 'Adoption by Intake Season', 'Season',
                          os.path.join(FIGURES_DIR, 'adoption_by_season.png'))
    plot_age_distribution(df, os.path.join(FIGURES_DIR, 'age_distribution.png'))

    train_df, test_df = train_test_split(
        df[MODEL_COLUMNS], test_size=0.2, random_state=RANDOM_SEED, stratify=df[TARGET]
    )
    print(f"\nTrain set: {train_df.shape[0]} samples")
    print(f"Test set: {test_df.shape[0]} samples")

    print("\n===== Training Random Forest =====")
    model = train_rf_model(train_df, FORMULA, ntree=NTREE, mtry=MTRY, seed=RANDOM_SEED)

    print("\n===== Evaluating on Test Set =====")
    results = evaluate_rf_model(model, test_df, TARGET, POSITIVE_LEVEL, NEGATIVE_LEVEL)
    print(results['confusion_matrix'])
    print(results['cm_summary'].to_string(index=False))
    print(results['metrics'].to_string(index=False))

    ensure_dir_exists(TABLES_DIR)
    results['metrics'].to_csv(os.path.join(TABLES_DIR, 'model_metrics.csv'), index=False)
    results['cm_summary'].to_csv(os.path.join(TABLES_DIR, 'confusion_matrix_summary.csv'), index=False)

    plt.close(plot_confusion_matrix(results['confusion_matrix'],
                                    os.path.join(FIGURES_DIR, 'confusion_matrix.png')))
    plt.close(plot_feature_importance(model, os.path.join(FIGURES_DIR, 'feature_importance.png')))

    print("\nAnalysis complete!")
    return results


if __name__ == "__main__":
    main()
