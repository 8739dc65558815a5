import warnings

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import pytest
from matplotlib.figure import Figure
from sklearn.ensemble import RandomForestClassifier

import adoption_prediction
from adoption_prediction import (
    evaluate_rf_model,
    feature_importance_table,
    parse_formula,
    plot_confusion_matrix,
    plot_feature_importance,
    prepare_adoption_data,
    train_rf_model,
)


@pytest.fixture
def model(adoption_data):
    return train_rf_model(adoption_data, 'adopted ~ .', ntree=25, seed=42)


def test_parse_formula():
    assert parse_formula('adopted ~ age + sex') == ('adopted', ['age', 'sex'])
    assert parse_formula('adopted~age') == ('adopted', ['age'])
    assert parse_formula('adopted ~ .') == ('adopted', None)
    assert parse_formula('adopted ~ `intake type` + age') == ('adopted', ['intake type', 'age'])


@pytest.mark.parametrize('formula', [
    None, 'adopted', 'adopted ~', '~ age', 'adopted ~ age +', 'a ~ b ~ c', 'adopted yes ~ age',
])
def test_parse_formula_malformed(formula):
    with pytest.raises(ValueError):
        parse_formula(formula)


def test_train_rf_model_explicit_formula(adoption_data):
    model = train_rf_model(adoption_data, 'adopted ~ age + animal_type', ntree=10)
    assert list(model.feature_names_in_) == ['age', 'animal_type']
    assert isinstance(model[-1], RandomForestClassifier)
    assert model[-1].n_estimators == 10


def test_train_rf_model_dot_formula_uses_all_columns(model):
    assert list(model.feature_names_in_) == ['animal_type', 'age', 'sex']


def test_train_rf_model_is_reproducible(adoption_data):
    first = train_rf_model(adoption_data, 'adopted ~ .', ntree=15, seed=7)
    second = train_rf_model(adoption_data, 'adopted ~ .', ntree=15, seed=7)
    np.testing.assert_array_equal(first.predict(adoption_data), second.predict(adoption_data))
    np.testing.assert_array_equal(first.predict_proba(adoption_data), second.predict_proba(adoption_data))


def test_train_rf_model_resets_large_mtry(adoption_data):
    with pytest.warns(UserWarning, match='mtry'):
        model = train_rf_model(adoption_data, 'adopted ~ age', ntree=5, mtry=3)
    assert model[-1].max_features == 1


def test_train_rf_model_resets_small_mtry(adoption_data):
    with pytest.warns(UserWarning, match='mtry'):
        model = train_rf_model(adoption_data, 'adopted ~ .', ntree=5, mtry=0.4)
    assert model[-1].max_features == 1


def test_train_rf_model_rounds_mtry(adoption_data):
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter('always')
        model = train_rf_model(adoption_data, 'adopted ~ .', ntree=5, mtry=2.4)
    assert model[-1].max_features == 2
    assert not [w for w in caught if 'mtry' in str(w.message)]


def test_train_rf_model_validation(adoption_data):
    with pytest.raises(TypeError):
        train_rf_model(adoption_data.to_dict(), 'adopted ~ age')
    with pytest.raises(ValueError):
        train_rf_model(adoption_data, 'adopted age')
    with pytest.raises(ValueError, match="Response variable 'outcome' not found"):
        train_rf_model(adoption_data, 'outcome ~ age')
    with pytest.raises(ValueError, match='Missing required columns: color, size'):
        train_rf_model(adoption_data, 'adopted ~ age + color + size')


@pytest.mark.parametrize('ntree, mtry', [(0, 2), (-5, 2), ('100', 2), ([100, 200], 2),
                                         (100, 0), (100, None), (100, True),
                                         (float('inf'), 2), (float('nan'), 2),
                                         (100, float('inf')), (100, float('nan'))])
def test_train_rf_model_rejects_bad_hyperparameters(adoption_data, ntree, mtry):
    with pytest.raises(ValueError):
        train_rf_model(adoption_data, 'adopted ~ .', ntree=ntree, mtry=mtry)


def test_evaluate_rf_model(model, adoption_data):
    results = evaluate_rf_model(model, adoption_data, 'adopted', 'Yes', 'No')

    assert set(results) == {'confusion_matrix', 'metrics', 'cm_summary'}
    assert results['metrics']['Metric'].tolist() == ['Accuracy', 'Sensitivity', 'Specificity']
    assert results['metrics']['Value'].tolist() == [1.0, 1.0, 1.0]

    summary = results['cm_summary'].set_index('Metric')['Count']
    assert summary['True Positives'] == 20
    assert summary['True Negatives'] == 40
    assert summary['False Positives'] == 0
    assert summary['False Negatives'] == 0


def test_evaluate_rf_model_cells_sum_to_rows(model, adoption_data):
    test_d = adoption_data.sample(frac=0.5, random_state=1)
    results = evaluate_rf_model(model, test_d)
    assert results['cm_summary']['Count'].sum() == len(test_d)
    assert results['confusion_matrix'].to_numpy().sum() == len(test_d)


def test_evaluate_rf_model_level_order(model, adoption_data):
    results = evaluate_rf_model(model, adoption_data, 'adopted', 'No', 'Yes')
    cm = results['confusion_matrix']
    assert cm.index.tolist() == ['No', 'Yes']
    assert cm.columns.tolist() == ['No', 'Yes']
    summary = results['cm_summary'].set_index('Metric')['Count']
    assert summary['True Positives'] == 40
    assert summary['True Negatives'] == 20


def test_evaluate_rf_model_counts_errors_by_label(model):
    # animal_type decides the prediction, so flipping the truth makes every row wrong
    test_d = pd.DataFrame({
        'adopted': ['No', 'No', 'Yes'],
        'animal_type': ['dog', 'dog', 'cat'],
        'age': [1, 7, 4],
        'sex': ['M', 'F', 'F'],
    })
    results = evaluate_rf_model(model, test_d)
    summary = results['cm_summary'].set_index('Metric')['Count']
    assert summary['False Positives'] == 2
    assert summary['False Negatives'] == 1
    assert results['confusion_matrix'].loc['No', 'Yes'] == 2
    assert results['metrics'].set_index('Metric').loc['Accuracy', 'Value'] == 0.0


def test_evaluate_rf_model_validation(model, adoption_data):
    with pytest.raises(TypeError):
        evaluate_rf_model(RandomForestClassifier(), adoption_data)
    with pytest.raises(TypeError):
        evaluate_rf_model(model, adoption_data.to_numpy())
    with pytest.raises(ValueError, match="Target column 'outcome' not found"):
        evaluate_rf_model(model, adoption_data, target_col='outcome')


def test_feature_importance_table(model, adoption_data):
    table = feature_importance_table(model)
    assert sorted(table['Feature']) == ['age', 'animal_type', 'sex']
    assert table['Importance'].sum() == pytest.approx(1.0)
    assert table['Importance'].is_monotonic_decreasing

    permuted = feature_importance_table(model, 'permutation', data=adoption_data, target_col='adopted')
    assert sorted(permuted['Feature']) == ['age', 'animal_type', 'sex']


def test_feature_importance_table_validation(model):
    with pytest.raises(ValueError):
        feature_importance_table(model, 'gini')
    with pytest.raises(ValueError):
        feature_importance_table(model, 'permutation')


def test_plot_confusion_matrix(model, adoption_data, tmp_path):
    cm = evaluate_rf_model(model, adoption_data)['confusion_matrix']
    path = tmp_path / 'figures' / 'confusion_matrix.png'

    fig = plot_confusion_matrix(cm, str(path))

    assert isinstance(fig, Figure)
    assert path.exists()
    assert isinstance(plot_confusion_matrix(cm), Figure)


def test_plot_confusion_matrix_rejects_other_input():
    with pytest.raises(TypeError):
        plot_confusion_matrix([[1, 2], [3, 4]])


def test_plot_feature_importance(model, tmp_path):
    path = tmp_path / 'feature_importance.png'
    fig = plot_feature_importance(model, str(path))
    assert isinstance(fig, Figure)
    assert path.exists()

    with pytest.raises(TypeError):
        plot_feature_importance('not a model')


def test_model_plots_leave_global_style_untouched(model, adoption_data):
    keys = ['axes.facecolor', 'axes.grid', 'axes.edgecolor', 'font.size']
    before = {key: plt.rcParams[key] for key in keys}

    plot_confusion_matrix(evaluate_rf_model(model, adoption_data)['confusion_matrix'])
    plot_feature_importance(model)

    assert {key: plt.rcParams[key] for key in keys} == before


def test_prepare_adoption_data():
    raw = pd.DataFrame({
        'dob': ['2020-01-01', '2015-06-01', None],
        'intake_date': ['2024-01-15', '2024-07-04', '2024-10-01'],
        'animal_type': ['dog', 'reptile', 'cat'],
        'sex': ['M', 'F', 'F'],
        'intake_type': ['stray', 'stray', 'owner surrender'],
        'intake_condition': ['normal', 'ill', 'normal'],
        'adopted': ['Yes', 'No', 'Yes'],
    })
    df = prepare_adoption_data(raw, reference_date='2024-12-31')

    assert len(df) == 2
    assert df['age'].tolist() == [5, 9]
    assert df['season'].tolist() == ['Winter', 'Summer']
    assert df['animal_type'].tolist() == ['dog', 'Other']
    assert isinstance(df['adopted'].dtype, pd.CategoricalDtype)


def test_main_without_data(tmp_path, monkeypatch, capsys):
    monkeypatch.setattr(adoption_prediction, 'DATA_PATH', str(tmp_path / 'missing.csv'))
    assert adoption_prediction.main() is None
    assert 'Could not find' in capsys.readouterr().out
