"""Assembles small class files byte by byte, so tests need no JDK."""

import struct

MAGIC = 0xCAFEBABE

ACC_PUBLIC = 0x0001
ACC_STATIC = 0x0008
ACC_FINAL = 0x0010
ACC_SUPER = 0x0020


def u1(value: int) -> bytes:
    return struct.pack(">B", value)


def u2(value: int) -> bytes:
    return struct.pack(">H", value)


class ClassBytes:
    """Collects constant pool entries, members and attributes, then lays out the class file."""

    def __init__(self, name: str = "Foo", super_name: str = "java/lang/Object",
                 version: tuple[int, int] = (52, 0), access: int = ACC_PUBLIC | ACC_SUPER):
        self.name = name
        self.super_name = super_name
        self.version = version
        self.access = access
        self.entries: list[bytes] = []
        self.count = 1
        self._index: dict = {}
        self.fields: list[bytes] = []
        self.methods: list[bytes] = []
        self.attributes: list[bytes] = []
        self.interfaces: list[str] = []
        self.bootstrap: list[tuple[int, list[int]]] = []

    # Constant pool

    def _add(self, key, data: bytes, slots: int = 1) -> int:
        if key in self._index:
            return self._index[key]
        index = self.count
        self.entries.append(data)
        self._index[key] = index
        self.count += slots
        return index

    def utf8(self, value: str) -> int:
        data = value.encode("utf-8")
        return self._add(("utf8", value), struct.pack(">BH", 1, len(data)) + data)

    def integer(self, value: int) -> int:
        return self._add(("int", value), struct.pack(">Bi", 3, value))

    def long(self, value: int) -> int:
        return self._add(("long", value), struct.pack(">Bq", 5, value), 2)

    def cls(self, name: str) -> int:
        return self._add(("class", name), struct.pack(">BH", 7, self.utf8(name)))

    def string(self, value: str) -> int:
        return self._add(("string", value), struct.pack(">BH", 8, self.utf8(value)))

    def name_and_type(self, name: str, descriptor: str) -> int:
        return self._add(("nat", name, descriptor),
                         struct.pack(">BHH", 12, self.utf8(name), self.utf8(descriptor)))

    def fieldref(self, owner: str, name: str, descriptor: str) -> int:
        return self._add(("field", owner, name, descriptor),
                         struct.pack(">BHH", 9, self.cls(owner), self.name_and_type(name, descriptor)))

    def methodref(self, owner: str, name: str, descriptor: str) -> int:
        return self._add(("method", owner, name, descriptor),
                         struct.pack(">BHH", 10, self.cls(owner), self.name_and_type(name, descriptor)))

    def method_handle(self, kind: int, ref: int) -> int:
        return self._add(("handle", kind, ref), struct.pack(">BBH", 15, kind, ref))

    def method_type(self, descriptor: str) -> int:
        return self._add(("mtype", descriptor), struct.pack(">BH", 16, self.utf8(descriptor)))

    def invoke_dynamic(self, bootstrap: int, name: str, descriptor: str) -> int:
        return self._add(("indy", bootstrap, name, descriptor),
                         struct.pack(">BHH", 18, bootstrap, self.name_and_type(name, descriptor)))

    # Attributes and members

    def attribute(self, name: str, data: bytes) -> bytes:
        return struct.pack(">HI", self.utf8(name), len(data)) + data

    def code(self, code: bytes, max_stack: int, max_locals: int,
             handlers=(), attributes=()) -> bytes:
        out = struct.pack(">HHI", max_stack, max_locals, len(code)) + code
        out += u2(len(handlers))
        for handler in handlers:
            out += struct.pack(">HHHH", *handler)
        out += u2(len(attributes)) + b"".join(attributes)
        return self.attribute("Code", out)

    def field(self, name: str, descriptor: str, access: int = ACC_PUBLIC, attributes=()):
        self.fields.append(struct.pack(">HHHH", access, self.utf8(name), self.utf8(descriptor),
                                       len(attributes)) + b"".join(attributes))

    def method(self, name: str, descriptor: str, access: int = ACC_PUBLIC, attributes=()):
        self.methods.append(struct.pack(">HHHH", access, self.utf8(name), self.utf8(descriptor),
                                        len(attributes)) + b"".join(attributes))

    def build(self) -> bytes:
        this_class = self.cls(self.name)
        super_class = self.cls(self.super_name) if self.super_name else 0
        attributes = list(self.attributes)
        if self.bootstrap:
            table = u2(len(self.bootstrap))
            for handle, args in self.bootstrap:
                table += u2(handle) + u2(len(args)) + b"".join(u2(a) for a in args)
            attributes.append(self.attribute("BootstrapMethods", table))

        interfaces = [self.cls(name) for name in self.interfaces]
        body = struct.pack(">HHHH", self.access, this_class, super_class, len(interfaces))
        body += b"".join(u2(i) for i in interfaces)
        body += u2(len(self.fields)) + b"".join(self.fields)
        body += u2(len(self.methods)) + b"".join(self.methods)
        body += u2(len(attributes)) + b"".join(attributes)

        major, minor = self.version
        header = struct.pack(">IHH", MAGIC, minor, major)
        return header + u2(self.count) + b"".join(self.entries) + body


def foo_class() -> bytes:
    """``public class Foo { int foo() { return 1; } }`` without a constructor."""
    cb = ClassBytes("Foo")
    cb.method("foo", "()I", ACC_PUBLIC, [cb.code(bytes([0x04, 0xAC]), 1, 1)])
    return cb.build()


def sample_class() -> bytes:
    """A class exercising most modeled attributes.

    Methods: a constructor, ``static int max(int a, int b)`` with line numbers,
    local variables, parameter names and a stack map frame, ``static void
    guarded()`` calling ``work()`` under a catch-all handler, and ``static
    Runnable task()`` built with invokedynamic.
    """
    cb = ClassBytes("com/example/Sample")

    cb.field("ANSWER", "I", ACC_PUBLIC | ACC_STATIC | ACC_FINAL,
             [cb.attribute("ConstantValue", u2(cb.integer(42)))])
    cb.field("GREETING", "Ljava/lang/String;", ACC_PUBLIC | ACC_STATIC | ACC_FINAL,
             [cb.attribute("ConstantValue", u2(cb.string("hi")))])
    cb.field("BIG", "J", ACC_PUBLIC | ACC_STATIC | ACC_FINAL,
             [cb.attribute("ConstantValue", u2(cb.long(1 << 40)))])

    object_init = cb.methodref("java/lang/Object", "<init>", "()V")
    cb.method("<init>", "()V", ACC_PUBLIC, [
        cb.code(bytes([0x2A, 0xB7]) + u2(object_init) + bytes([0xB1]), 1, 1),
    ])

    # iload_0, iload_1, if_icmplt +5, iload_0, ireturn, iload_1, ireturn
    max_code = bytes([0x1A, 0x1B, 0xA1, 0x00, 0x05, 0x1A, 0xAC, 0x1B, 0xAC])
    lines = cb.attribute("LineNumberTable", u2(2) + u2(0) + u2(10) + u2(7) + u2(12))
    locals_table = cb.attribute("LocalVariableTable", u2(2)
                                + struct.pack(">HHHHH", 0, 9, cb.utf8("a"), cb.utf8("I"), 0)
                                + struct.pack(">HHHHH", 0, 9, cb.utf8("b"), cb.utf8("I"), 1))
    same_frame = cb.attribute("StackMapTable", u2(1) + u1(7))
    parameters = cb.attribute("MethodParameters", u1(2) + u2(cb.utf8("a")) + u2(0)
                              + u2(cb.utf8("b")) + u2(0))
    cb.method("max", "(II)I", ACC_PUBLIC | ACC_STATIC, [
        cb.code(max_code, 2, 2, attributes=[lines, locals_table, same_frame]),
        parameters,
    ])

    # invokestatic work, return, astore_0, invokestatic work, aload_0, athrow
    work = cb.methodref("com/example/Sample", "work", "()V")
    guarded_code = (bytes([0xB8]) + u2(work) + bytes([0xB1, 0x4B, 0xB8]) + u2(work)
                    + bytes([0x2A, 0xBF]))
    handler_frame = cb.attribute("StackMapTable", u2(1) + u1(64 + 4) + u1(7)
                                 + u2(cb.cls("java/lang/Throwable")))
    cb.method("guarded", "()V", ACC_PUBLIC | ACC_STATIC, [
        cb.code(guarded_code, 1, 1, handlers=[(0, 3, 4, 0)], attributes=[handler_frame]),
        cb.attribute("Exceptions", u2(1) + u2(cb.cls("java/io/IOException"))),
    ])
    cb.method("work", "()V", ACC_PUBLIC | ACC_STATIC, [cb.code(bytes([0xB1]), 0, 0)])

    metafactory = cb.methodref("java/lang/invoke/LambdaMetafactory", "metafactory",
                               "(Ljava/lang/invoke/MethodHandles$Lookup;Ljava/lang/String;"
                               "Ljava/lang/invoke/MethodType;)Ljava/lang/invoke/CallSite;")
    cb.bootstrap.append((cb.method_handle(6, metafactory), [cb.method_type("()V")]))
    indy = cb.invoke_dynamic(0, "run", "()Ljava/lang/Runnable;")
    cb.method("task", "()Ljava/lang/Runnable;", ACC_PUBLIC | ACC_STATIC, [
        cb.code(bytes([0xBA]) + u2(indy) + bytes([0x00, 0x00, 0xB0]), 1, 0),
    ])

    cb.attributes.append(cb.attribute("SourceFile", u2(cb.utf8("Sample.java"))))
    tags = (u2(1) + u2(cb.utf8("Lcom/example/Tags;")) + u2(1) + u2(cb.utf8("value"))
            + b"[" + u2(3) + b"".join(b"s" + u2(cb.utf8(s)) for s in ("a", "b", "c")))
    cb.attributes.append(cb.attribute("RuntimeVisibleAnnotations", tags))
    cb.attributes.append(cb.attribute("Custom", b"\x01\x02\x03"))
    return cb.build()


ENUM_CONSTRUCTOR = "(Ljava/lang/String;ILjava/lang/String;)V"


def annotation_entry(cb: ClassBytes, descriptor: str) -> bytes:
    """One annotation list holding a single annotation without values."""
    return u2(1) + u2(cb.utf8(descriptor)) + u2(0)


def enum_constructor_class(make_attribute) -> bytes:
    """An enum-style constructor whose first two parameters are synthetic."""
    cb = ClassBytes("Color", super_name="java/lang/Enum")
    cb.method("<init>", ENUM_CONSTRUCTOR, 0x0002, [make_attribute(cb)])
    return cb.build()


def identity_class(*code_attributes) -> bytes:
    """``static int m(int)`` returning its argument, with extra Code attributes."""
    cb = ClassBytes("Lines")
    cb.method("m", "(I)I", ACC_PUBLIC | ACC_STATIC,
              [cb.code(b"\x1a\xac", 1, 1, attributes=[make(cb) for make in code_attributes])])
    return cb.build()


def line_table(*entries):
    return lambda cb: cb.attribute("LineNumberTable", u2(len(entries)) + b"".join(
        u2(pc) + u2(line) for pc, line in entries))
