# Copyright (c) 2025 GroeimetAI
#
# This software is proprietary. All rights reserved.
# No part of it may be copied, modified or distributed
# without prior written permission from GroeimetAI.

from groeimet_sandbox.runtimes.javascript import JavaScriptRuntime
from groeimet_sandbox.runtimes.python import EngineState, PythonRuntime
from groeimet_sandbox.runtimes.typescript import TypeScriptRuntime

__all__ = ["EngineState", "JavaScriptRuntime", "PythonRuntime", "TypeScriptRuntime"]
