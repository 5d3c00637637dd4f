"""
In-page scripts executed through :meth:`TargetContext.evaluate`.

Each script is a single JavaScript function expression taking one argument.
Binary objects cannot cross the evaluation boundary, so the database reader
replaces them with ``{"__opaque__": kind, "size": n}`` markers which the
database mirror turns back into :class:`OpaqueBlob` instances.
"""

OPAQUE_KEY = "__opaque__"

# Bound on how deep the in-page reader walks; only protects the transport
# against cyclic records, the normalizer applies the real depth limit.
TRANSPORT_MAX_DEPTH = 32

READ_STORAGE = """
(area) => {
  const storage = window[area];
  const items = {};
  for (let i = 0; i < storage.length; i++) {
    const key = storage.key(i);
    items[key] = storage.getItem(key);
  }
  return items;
}
"""

CLEAR_STORAGE = """
(area) => {
  window[area].clear();
  return true;
}
"""

SET_STORAGE = """
({ area, items, clear }) => {
  const storage = window[area];
  if (clear) {
    storage.clear();
  }
  let restored = 0;
  const failed = [];
  for (const [key, value] of Object.entries(items)) {
    try {
      storage.setItem(key, value);
      restored++;
    } catch (e) {
      failed.push({ key, error: String(e && e.message || e) });
    }
  }
  return { restored, failed };
}
"""

LIST_DATABASES = """
async () => {
  if (!window.indexedDB || typeof window.indexedDB.databases !== 'function') {
    return [];
  }
  const databases = await window.indexedDB.databases();
  return databases.map((info) => info.name).filter(Boolean);
}
"""

EXPORT_DATABASE = """
async ({ name, maxDepth }) => {
  const pack = (value, depth) => {
    if (typeof value === 'bigint') return value.toString();
    if (value === null || typeof value !== 'object') return value;
    if (depth > maxDepth) return { __opaque__: 'depth' };
    if (value instanceof ArrayBuffer) return { __opaque__: 'ArrayBuffer', size: value.byteLength };
    if (ArrayBuffer.isView(value)) return { __opaque__: value.constructor.name, size: value.byteLength };
    if (typeof Blob !== 'undefined' && value instanceof Blob) return { __opaque__: value.constructor.name, size: value.size };
    if (value instanceof Date) return value;
    if (Array.isArray(value)) return value.map((item) => pack(item, depth + 1));
    if (value instanceof Map) {
      return Object.fromEntries(Array.from(value, ([k, v]) => [String(k), pack(v, depth + 1)]));
    }
    if (value instanceof Set) return Array.from(value, (item) => pack(item, depth + 1));
    const out = {};
    for (const key of Object.keys(value)) {
      out[key] = pack(value[key], depth + 1);
    }
    return out;
  };

  const db = await new Promise((resolve, reject) => {
    const request = window.indexedDB.open(name);
    request.onsuccess = () => resolve(request.result);
    request.onerror = () => reject(request.error);
    request.onblocked = () => reject(new Error('open blocked'));
  });

  const collections = {};
  const errors = {};
  try {
    for (const storeName of Array.from(db.objectStoreNames)) {
      try {
        collections[storeName] = await new Promise((resolve, reject) => {
          const request = db.transaction(storeName, 'readonly').objectStore(storeName).getAll();
          request.onsuccess = () => resolve(request.result.map((record) => pack(record, 0)));
          request.onerror = () => reject(request.error);
        });
      } catch (e) {
        errors[storeName] = String(e && e.message || e);
      }
    }
  } finally {
    db.close();
  }
  return { collections, errors };
}
"""

RECREATE_DATABASE = """
async ({ name, collections }) => {
  await new Promise((resolve, reject) => {
    const request = window.indexedDB.deleteDatabase(name);
    request.onsuccess = () => resolve();
    request.onblocked = () => resolve();
    request.onerror = () => reject(request.error);
  });
  if (collections.length === 0) {
    return { created: [] };
  }
  const db = await new Promise((resolve, reject) => {
    const request = window.indexedDB.open(name, 1);
    request.onupgradeneeded = () => {
      const upgrading = request.result;
      for (const storeName of collections) {
        if (!upgrading.objectStoreNames.contains(storeName)) {
          upgrading.createObjectStore(storeName, { autoIncrement: true });
        }
      }
    };
    request.onsuccess = () => resolve(request.result);
    request.onerror = () => reject(request.error);
  });
  const created = Array.from(db.objectStoreNames);
  db.close();
  return { created };
}
"""

INSERT_RECORDS = """
async ({ name, collection, records }) => {
  const db = await new Promise((resolve, reject) => {
    const request = window.indexedDB.open(name);
    request.onsuccess = () => resolve(request.result);
    request.onerror = () => reject(request.error);
  });
  try {
    return await new Promise((resolve, reject) => {
      const transaction = db.transaction(collection, 'readwrite');
      const store = transaction.objectStore(collection);
      let added = 0;
      const failed = [];
      records.forEach((record, index) => {
        try {
          const request = store.add(record);
          request.onsuccess = () => { added++; };
          request.onerror = (event) => {
            failed.push({ index, error: String(request.error) });
            event.preventDefault();
          };
        } catch (e) {
          failed.push({ index, error: String(e && e.message || e) });
        }
      });
      transaction.oncomplete = () => resolve({ added, failed });
      transaction.onabort = () => reject(transaction.error || new Error('transaction aborted'));
    });
  } finally {
    db.close();
  }
}
"""
