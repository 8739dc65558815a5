import matplotlib

matplotlib.use('Agg')

import matplotlib.pyplot as plt
import pandas as pd
import pytest


@pytest.fixture(autouse=True)
def close_figures():
    yield
    plt.close('all')


@pytest.fixture
def adoption_data():
    # adoption is fully determined by animal_type so the forest can learn it
    animal_type = ['dog', 'cat', 'bird', 'dog', 'cat', 'bird'] * 10
    adopted = ['Yes' if a == 'dog' else 'No' for a in animal_type]
    return pd.DataFrame({
        'adopted': adopted,
        'animal_type': animal_type,
        'age': [1, 4, 2, 7, 3, 9] * 10,
        'sex': ['M', 'F'] * 30,
    })
