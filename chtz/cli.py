"""
Командная строка: chtz generate | reverse | template.
"""
import argparse
import sys
import traceback
from pathlib import Path

from .converter import ReverseConverter
from .errors import YamlValidationError
from .generator import generate, validate
from .package import build_default_template
from .parser import format_validation_error
from .styles import find_config, load_config


RULE = "═" * 60


def print_warnings(warnings, verbose: bool) -> None:
    if not warnings:
        return
    print(f"⚠️  Предупреждений: {len(warnings)}")
    if verbose:
        for warning in warnings:
            print(f"   - [{warning.get('code', '')}] {warning.get('message', '')}")


def print_failure(error: str, stack: str = '', verbose: bool = False) -> None:
    print("\n" + RULE)
    print("❌ Ошибка")
    print(RULE)
    print(error)
    if verbose and stack:
        print(stack)


# ============================================================================
# GENERATE
# ============================================================================

def run_generate(args) -> int:
    if args.validate_only:
        result = validate(args.input)
        if result['valid']:
            stats = result['stats']
            print(f"✅ Документ корректен: {args.input}")
            print(f"   Заголовков: {stats['headings']}, изображений: {stats['images']}, "
                  f"ссылок: {stats['links']}")
            return 0
        if result.get('error_type') == YamlValidationError.__name__:
            print(format_validation_error(YamlValidationError(result['error'], result.get('field'))))
        else:
            print(f"❌ {result['error']}")
        return 1

    result = generate(
        args.input,
        output_path=args.output,
        template_path=args.template,
        images_dir=args.images_dir,
        config_path=args.config,
        verbose=args.verbose,
    )
    if not result['success']:
        print_failure(result['error'], result.get('stack', ''), args.verbose)
        return 1

    stats = result['stats']
    print("\n" + RULE)
    print("✅ DOCX создан")
    print(RULE)
    print(f"📁 {result['output_path']}")
    print(f"📊 Заголовков: {stats['headings']}, изображений: {stats['images']}, "
          f"гиперссылок: {stats['hyperlinks']}")
    print_warnings(result['warnings'], args.verbose)
    return 0


# ============================================================================
# REVERSE
# ============================================================================

def run_reverse(args) -> int:
    input_path = Path(args.input)
    if not input_path.exists():
        print(f"❌ Файл не найден: {input_path}")
        return 1

    config = load_config(find_config(input_path))
    images_dir = args.images_dir or config['reverse']['images_dir']
    strict = args.strict or bool(config['reverse']['strict'])

    converter = ReverseConverter(
        extract_images=not args.no_images,
        images_dir=images_dir,
        strict=strict,
        verbose=args.verbose,
    )
    result = converter.convert(input_path)
    if not result['success']:
        print_failure(result['error'], result.get('stack', ''), args.verbose)
        print_warnings(result.get('warnings'), args.verbose)
        return 1

    suffix = '.json' if args.format == 'json' else '.md'
    output_path = Path(args.output) if args.output else input_path.with_suffix(suffix)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    if args.format == 'json':
        output_path.write_text(converter.to_json(result), encoding='utf-8')
    else:
        output_path.write_text(result['markdown'], encoding='utf-8')

    saved = []
    if result['images']:
        target = Path(images_dir)
        if not target.is_absolute():
            target = output_path.parent / target
        saved = converter.save_images(result['images'], target)

    stats = result['stats']
    print("\n" + RULE)
    print("✅ Markdown создан")
    print(RULE)
    print(f"📁 {output_path}")
    print(f"📊 Разделов: {stats['sections']}, таблиц: {stats['tables']}, "
          f"изображений: {len(saved)}")
    print_warnings(result['warnings'], args.verbose)

    if args.diff:
        original = Path(args.diff).read_text(encoding='utf-8')
        report = converter.diff(original, result['markdown'], stats=True)
        diff_stats = report['stats']
        print(f"\n🔍 Сравнение с {args.diff}:")
        print(f"   +{diff_stats['lines_added']} / -{diff_stats['lines_removed']} строк")
        print(report['diff'])
    return 0


def run_template(args) -> int:
    build_default_template(Path(args.output))
    print(f"✅ Шаблон сохранён: {args.output}")
    return 0


# ============================================================================
# MAIN
# ============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='chtz', description="Конвертер ЧТЗ: Markdown ⇄ DOCX")
    commands = parser.add_subparsers(dest='command')
    commands.required = True

    gen = commands.add_parser('generate', help="Markdown -> DOCX")
    gen.add_argument("input", type=Path, help="Markdown документ")
    gen.add_argument("--output", "-o", type=Path, help="Выходной .docx")
    gen.add_argument("--template", "-t", type=Path, help="DOCX шаблон")
    gen.add_argument("--images-dir", "-i", type=Path, help="Каталог изображений")
    gen.add_argument("--config", "-c", type=Path, help="YAML конфигурация")
    gen.add_argument("--verbose", "-v", action="store_true", help="Подробный вывод")
    gen.add_argument("--validate-only", action="store_true", help="Только проверить документ")
    gen.set_defaults(handler=run_generate)

    rev = commands.add_parser('reverse', help="DOCX -> Markdown")
    rev.add_argument("input", type=Path, help="DOCX документ")
    rev.add_argument("--output", "-o", type=Path, help="Выходной файл")
    rev.add_argument("--images-dir", help="Каталог изображений относительно результата")
    rev.add_argument("--no-images", action="store_true", help="Не извлекать изображения")
    rev.add_argument("--diff", type=Path, help="Сравнить с исходным Markdown")
    rev.add_argument("--strict", action="store_true", help="Ошибки проверки прерывают конвертацию")
    rev.add_argument("--format", choices=["md", "json"], default="md", help="Формат результата")
    rev.add_argument("--verbose", "-v", action="store_true", help="Подробный вывод")
    rev.set_defaults(handler=run_reverse)

    tpl = commands.add_parser('template', help="Сохранить шаблон DOCX по умолчанию")
    tpl.add_argument("output", type=Path, help="Путь к .docx")
    tpl.set_defaults(handler=run_template)
    return parser


def main(argv=None) -> int:
    """Точка входа chtz."""
    args = build_parser().parse_args(argv)
    try:
        return args.handler(args)
    except KeyboardInterrupt:
        print("\n\n⚠️  Прервано пользователем")
        return 1
    except Exception as e:
        print(f"\n❌ Неожиданная ошибка: {e}")
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
