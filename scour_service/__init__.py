# Copyright (c) 2024 torchtorch Authors.
# Licensed under the Apache License, Version 2.0

__version__ = "0.3.0"
