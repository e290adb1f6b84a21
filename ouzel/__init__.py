"""
Species distribution modelling, one slide at a time

Tools to download occurrences of the ring ouzel (Turdus torquatus) and
environmental layers for Switzerland, train and validate a classifier, and
explain its predictions with partial responses and Shapley values.
"""

from .gbif import get_species_key, fetch_gbif_occurrences, extract_coordinates, fetch_presences
from .layers import LayerStack, download_layers, stack_layers
from .training import presence_layer, generate_pseudoabsences, prepare_training_data
from .model import SDM, Bagging
from .metrics import ConfusionMatrix, noskill, coinflip, constantpositive, constantnegative
from .validation import kfold, crossvalidate, threshold_sweep, forwardselection, variable_importance
from .explain import partial_response, explain, explain_layers
from .predict import predict_layer

__all__ = [
    'get_species_key',
    'fetch_gbif_occurrences',
    'extract_coordinates',
    'fetch_presences',
    'LayerStack',
    'download_layers',
    'stack_layers',
    'presence_layer',
    'generate_pseudoabsences',
    'prepare_training_data',
    'SDM',
    'Bagging',
    'ConfusionMatrix',
    'noskill',
    'coinflip',
    'constantpositive',
    'constantnegative',
    'kfold',
    'crossvalidate',
    'threshold_sweep',
    'forwardselection',
    'variable_importance',
    'partial_response',
    'explain',
    'explain_layers',
    'predict_layer',
]
