# spendlens/stores/__init__.py
from importlib import import_module

def get_store(config):
    name = config['store']['backend']
    store_path = config['store_backends'][name]
    module_name, cls_name = store_path.rsplit('.', 1)
    mod = import_module(module_name)
    return getattr(mod, cls_name)(config)
