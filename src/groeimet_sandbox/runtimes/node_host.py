# Copyright (c) 2025 GroeimetAI
#
# This software is proprietary. All rights reserved.
# No part of it may be copied, modified or distributed
# without prior written permission from GroeimetAI.

"""Node.js host program for the JavaScript and TypeScript runtimes.

The script is passed to ``node -e`` and reads a single JSON payload from
stdin. It answers with JSON lines on stdout using the same event vocabulary
as the Python worker (see ``groeimet_sandbox.models.protocol``).

Modes:
    execute: run ``code`` as the body of an async function inside a fresh
        ``vm`` context. Emits ``stdout``/``stderr`` events and one ``result``.
    transpile: strip TypeScript types from ``code``. Emits one ``transpiled``
        event, or a ``fault`` when no TypeScript support is available.
"""

NODE_HOST_SCRIPT = r"""
'use strict';
const vm = require('node:vm');
const { performance } = require('node:perf_hooks');

let finished = false;
const OUTPUT_CHUNK_CHARS = 64 * 1024;

function emit(message) {
  process.stdout.write(JSON.stringify(message) + '\n');
}

function describeError(err) {
  try {
    if (err !== null && typeof err === 'object' && 'message' in err) {
      return String(err.name || 'Error') + ': ' + String(err.message);
    }
    return 'Error: ' + String(err);
  } catch (e) {
    return 'Error: unprintable exception';
  }
}

function finish(started, error, timedOut) {
  if (finished) return;
  finished = true;
  emit({
    type: 'result',
    error: error,
    timed_out: timedOut,
    execution_time_ms: performance.now() - started,
  });
  process.exitCode = 0;
}

// Compiled inside the context so user code only ever sees context-realm functions.
function contextPrelude(write, hostFetch) {
  'use strict';
  const render = (value) => {
    if (typeof value === 'string') return value;
    if (value !== null && typeof value === 'object') {
      try {
        const text = JSON.stringify(value, null, 2);
        return text === undefined ? String(value) : text;
      } catch (e) {
        return String(value);
      }
    }
    return String(value);
  };
  const line = (args) => Array.prototype.map.call(args, render).join(' ') + '\n';
  const console = Object.freeze({
    log: (...args) => { write('stdout', line(args)); },
    info: (...args) => { write('stdout', line(args)); },
    debug: (...args) => { write('stdout', line(args)); },
    warn: (...args) => { write('stdout', line(['Warning:', ...args])); },
    error: (...args) => { write('stderr', line(args)); },
  });
  globalThis.console = console;
  globalThis.exports = {};
  if (hostFetch) {
    globalThis.fetch = hostFetch;
  }
}

function runInSandbox(payload) {
  const started = performance.now();
  const context = vm.createContext(Object.create(null), {
    name: 'groeimet-sandbox',
    codeGeneration: { strings: false, wasm: false },
  });
  const write = (stream, text) => {
    const data = String(text);
    try {
      for (let start = 0; start < data.length; start += OUTPUT_CHUNK_CHARS) {
        emit({ type: stream, data: data.slice(start, start + OUTPUT_CHUNK_CHARS) });
      }
    } catch (e) {
      // stdout closed; nothing left to report to
    }
  };
  const prelude = vm.runInContext('(' + contextPrelude.toString() + ')', context);
  prelude(write, payload.allow_network && typeof fetch === 'function' ? fetch : undefined);

  process.on('beforeExit', () => {
    finish(started, 'Execution did not complete: a pending promise never settled', false);
  });

  let completion;
  try {
    const script = new vm.Script('(async () => {\n' + payload.code + '\n})()', {
      filename: 'user_code.js',
    });
    completion = script.runInContext(context, {
      timeout: payload.timeout_ms,
      breakOnSigint: false,
    });
  } catch (err) {
    if (err && err.code === 'ERR_SCRIPT_EXECUTION_TIMEOUT') {
      finish(started, 'Execution timeout exceeded', true);
    } else {
      finish(started, describeError(err), false);
    }
    return;
  }

  Promise.resolve(completion).then(
    () => finish(started, null, false),
    (err) => finish(started, describeError(err), false),
  );
}

function formatDiagnostic(ts, diagnostic) {
  const message = ts.flattenDiagnosticMessageText(diagnostic.messageText, '\n');
  if (diagnostic.file && typeof diagnostic.start === 'number') {
    const pos = diagnostic.file.getLineAndCharacterOfPosition(diagnostic.start);
    return '(' + (pos.line + 1) + ',' + (pos.character + 1) + '): ' + message;
  }
  return message;
}

function transpile(payload) {
  let ts = null;
  try {
    ts = require(process.env.SANDBOX_TYPESCRIPT_MODULE || 'typescript');
  } catch (e) {
    ts = null;
  }
  if (ts !== null) {
    const output = ts.transpileModule(payload.code, {
      reportDiagnostics: true,
      compilerOptions: {
        module: ts.ModuleKind.CommonJS,
        target: ts.ScriptTarget.ES2022,
        strict: true,
      },
    });
    const diagnostics = (output.diagnostics || []).map((d) => formatDiagnostic(ts, d));
    emit({ type: 'transpiled', code: output.outputText, diagnostics: diagnostics });
    return;
  }

  const nodeModule = require('node:module');
  if (typeof nodeModule.stripTypeScriptTypes === 'function') {
    try {
      const code = nodeModule.stripTypeScriptTypes(payload.code, { mode: 'transform' });
      emit({ type: 'transpiled', code: code, diagnostics: [] });
    } catch (err) {
      emit({ type: 'transpiled', code: '', diagnostics: [describeError(err)] });
    }
    return;
  }
  emit({ type: 'fault', error: 'TypeScript support is not available in this Node.js installation' });
}

function readPayload() {
  return new Promise((resolve, reject) => {
    const chunks = [];
    process.stdin.on('data', (chunk) => chunks.push(chunk));
    process.stdin.on('end', () => {
      try {
        resolve(JSON.parse(Buffer.concat(chunks).toString('utf8')));
      } catch (err) {
        reject(err);
      }
    });
    process.stdin.on('error', reject);
  });
}

readPayload().then(
  (payload) => {
    emit({ type: 'ready', version: process.versions.node });
    if (payload.mode === 'transpile') {
      transpile(payload);
    } else {
      runInSandbox(payload);
    }
  },
  (err) => {
    emit({ type: 'fault', error: 'Invalid host payload: ' + describeError(err) });
  },
);
"""
